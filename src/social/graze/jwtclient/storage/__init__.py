"""
Credential Storage

- persistence.py: key-value backends (in-memory map, Redis)
- credentials.py: the credential store holding the access and refresh tokens
"""
