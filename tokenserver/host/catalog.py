"""Sample clients, resources and users loaded by development hosts."""

import json

from tokenserver.models.clients import Client, ClientSecret
from tokenserver.models.resources import ApiResource, ApiScope, IdentityResource
from tokenserver.stores.memory import TestUser

IDENTITY_RESOURCES = [
    IdentityResource(name="openid", user_claims=frozenset({"sub"})),
    IdentityResource(
        name="profile",
        user_claims=frozenset({"name", "family_name", "given_name", "website"}),
    ),
    IdentityResource(name="email", user_claims=frozenset({"email", "email_verified"})),
    IdentityResource(name="address", user_claims=frozenset({"address"})),
    IdentityResource(name="roles", user_claims=frozenset({"role"})),
]

API_SCOPES = [
    ApiScope(name="api1"),
    ApiScope(name="api2"),
    ApiScope(name="api3"),
    ApiScope(name="api4.with.roles", user_claims=frozenset({"role"})),
    ApiScope(name="transaction"),
]

API_RESOURCES = [
    ApiResource(name="api", scopes=frozenset({"api1", "api2", "api3", "transaction"})),
    ApiResource(name="api4", scopes=frozenset({"api4.with.roles"})),
]

CLIENTS = [
    Client(
        client_id="client",
        client_name="Client Credentials Client",
        client_secrets=(ClientSecret.shared("secret"),),
        allowed_grant_types=frozenset({"client_credentials"}),
        allowed_scopes=frozenset({"api1", "api2", "api3", "transaction"}),
    ),
    Client(
        client_id="roclient",
        client_name="Resource Owner Client",
        client_secrets=(ClientSecret.shared("secret"),),
        allowed_grant_types=frozenset({"password", "client_credentials"}),
        allowed_scopes=frozenset(
            {"openid", "profile", "email", "address", "roles", "api1", "api2", "api4.with.roles"}
        ),
        allow_offline_access=True,
    ),
    Client(
        client_id="client.custom",
        client_name="Extension Grant Client",
        client_secrets=(ClientSecret.shared("secret"),),
        allowed_grant_types=frozenset({"custom", "custom.nosubject"}),
        allowed_scopes=frozenset({"api1", "api2"}),
        allow_offline_access=True,
    ),
]

USERS = [
    TestUser(
        subject_id="818727",
        username="alice",
        password="alice",
        claims={
            "name": "Alice Smith",
            "given_name": "Alice",
            "family_name": "Smith",
            "email": "AliceSmith@email.com",
            "email_verified": True,
            "website": "http://alice.com",
            "role": ["Admin"],
        },
    ),
    TestUser(
        subject_id="88421113",
        username="bob",
        password="bob",
        claims={
            "name": "Bob Smith",
            "given_name": "Bob",
            "family_name": "Smith",
            "email": "BobSmith@email.com",
            "email_verified": True,
            "website": "http://bob.com",
            "address": json.dumps(
                {
                    "street_address": "One Hacker Way",
                    "locality": "Heidelberg",
                    "postal_code": 69118,
                    "country": "Germany",
                }
            ),
            "role": ["Geek", "Developer"],
        },
    ),
]
