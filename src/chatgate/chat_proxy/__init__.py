"""Chat proxy relaying browser chat requests to upstream LLM vendors.

Requests arrive at ``/api/chat`` already shaped for the target vendor; the
proxy attaches credentials, picks the endpoint and streams the upstream SSE
body back untouched.
"""

__all__ = []
