"""api/ -- FastAPI admin surface for operators.

Layer rule: api/ may import from core/, db/, directory/, and access/.
Nothing imports from api/ except the ASGI server.
"""
