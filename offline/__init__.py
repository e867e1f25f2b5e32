"""offline/ -- Encrypted local fallback used when the API cannot be reached.

Layer rule: offline/ imports only stdlib, third-party libraries, and core/.
It talks to the API over HTTP, never by importing api/ or the stores behind it.
"""
