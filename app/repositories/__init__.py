"""
Repository package for data access layers.

You can provide a custom entitlement data source by setting the environment
variable `ENTITLEMENT_REPOSITORY_IMPL` to a dotted path like:

    myapp.data.entitlements:PostgresEntitlementRepository

and ensuring that class implements the interface used by app.repositories.entitlements.
"""
