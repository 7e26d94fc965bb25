"""Worker runner for the Upload Platform's Temporal components.

Every deployment runs the same image with a different component argument
to select which activities the worker exposes.
"""
