"""Create or update the RMS endpoint for one tenant.

Endpoint rows belong to the property-management side; this is the operator
shortcut for local setups and incident fixes.
"""

import argparse

from sqlalchemy import select

from renewhook.common.db import SessionLocal
from renewhook.services.webhook.models import EndpointConfig


def upsert_endpoint(session_factory, tenant_id: str, url: str, secret: str, active: bool) -> EndpointConfig:
    """Insert the tenant's endpoint or overwrite the existing one."""

    with session_factory() as db:
        endpoint = db.execute(
            select(EndpointConfig).where(EndpointConfig.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if endpoint is None:
            endpoint = EndpointConfig(tenant_id=tenant_id)
            db.add(endpoint)
        endpoint.endpoint_url = url
        endpoint.signing_secret = secret
        endpoint.is_active = active
        db.commit()
        return endpoint


def main() -> None:
    parser = argparse.ArgumentParser(description="Register an RMS webhook endpoint for a tenant.")
    parser.add_argument("--tenant-id", required=True)
    parser.add_argument("--url", required=True)
    parser.add_argument("--secret", required=True)
    parser.add_argument("--inactive", action="store_true")
    args = parser.parse_args()

    endpoint = upsert_endpoint(SessionLocal, args.tenant_id, args.url, args.secret, not args.inactive)
    # Never echo the secret.
    print(f"tenant={endpoint.tenant_id} url={endpoint.endpoint_url} active={endpoint.is_active}")


if __name__ == "__main__":
    main()
