"""
Application plumbing for the JWT client: settings, metrics and the command line
entry point.
"""
