"""auth/ -- Authentication, session and authorization core for LabLIMS.

Layer rule: auth/ imports only stdlib + third-party libraries (plus fastapi in
auth/dependencies.py). It does NOT import from api/, core/, or standards/.
api/ imports from auth/, not the other way around.
"""
