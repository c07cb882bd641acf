"""
JWT-authenticated HTTP client

Key Components:
- chain.py: middleware chain around aiohttp (request description, resubmission)
- auth.py: bearer token attachment, 401 detection and the refresh-and-retry cycle
- jwt_client.py: the client facade and its factory, login
- exceptions.py: error taxonomy shared by the modules above

A request that fails with 401 is refreshed and resubmitted at most once. The
resubmitted request is flagged as a second attempt and is never refreshed
again, and a 401 from the refresh endpoint itself never triggers a refresh.
"""
