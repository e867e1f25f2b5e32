"""records/ -- Worker health profiles, medical documents, and the audit trail.

Layer rule: records/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, auth/, media/, or offline/.
"""
