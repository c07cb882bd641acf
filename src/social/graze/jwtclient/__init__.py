"""
JWT Client - transparent JSON Web Token authentication for aiohttp

This package wraps an aiohttp client session so that outgoing requests carry the
stored bearer token, and a request rejected with 401 is recovered by exchanging
the stored token pair at a refresh endpoint and resubmitting the request once.

Key Components:
- client: middleware chain, authentication middleware, client facade and login
- storage: credential store and its persistence backends (memory, Redis)
- app: settings, metrics and the command line entry point

Token Lifecycle:
1. Tokens are stored by `login` (callable or url mode) or set manually
2. Every request is sent with `Authorization: Bearer <access token>`
3. A 401 triggers one refresh; the new pair replaces the stored one and the
   request is resubmitted once, flagged as a second attempt
4. A failed refresh runs the logout action and clears the stored tokens, or
   surfaces the original 401 when no logout action is configured

Tokens are opaque: nothing in this package parses or verifies a JWT.
"""
