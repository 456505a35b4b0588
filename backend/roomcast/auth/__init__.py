"""Authentication module (username/password accounts + JWT bearer tokens).

Services:
    - UserStore: DuckDB account storage with PBKDF2 password hashes.
    - TokenService: signs and verifies the credential required by the
      realtime endpoint.
"""
