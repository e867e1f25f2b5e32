"""media/ -- Client for the third-party media host that stores uploaded documents.

Layer rule: media/ imports only stdlib, third-party libraries, and core/.
"""
