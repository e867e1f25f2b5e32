"""auth/ -- Authentication and authorization package for Migrant Health Records.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, records/, media/, or offline/.
api/ imports from auth/, not the other way around.
"""
