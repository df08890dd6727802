"""Infrastructure layer package.

PostgreSQL engine, session factory and ORM models backing the Pg* permission
stores. The Pg* adapters in src/permissions import src.infra.models directly
(inside their methods); the resolver and the HTTP routers only see the ports.
"""
