"""Workspace directory: workspaces, memberships, students, groups, coach contacts."""
