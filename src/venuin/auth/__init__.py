"""Authorization core -- principal resolver, tenant guard, capability gate
and session lifecycle manager.

Every tenant-bound handler runs, in order: resolve credentials to a
Principal, check the resource's tenant, check the capability (permission,
plan feature, plan limit). The session manager issues, refreshes and
revokes the sessions the resolver honors.
"""
