from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.http_setup import register_exception_handlers, register_http_middleware
from app.api.runtime_routes import RuntimeRouteDeps, register_runtime_routes
from app.auth.guard import AccountGuard
from app.auth.middleware import create_auth_middleware
from app.auth.notifications import EmailNotifier
from app.auth.rate_limiter import EndpointRateLimiter, rules_from_config
from app.auth.repository import IdentityRepository
from app.auth.router import create_auth_router
from app.auth.service import AuthService
from app.auth.session_cache import CacheJanitor, InMemoryIdentityCache, InMemoryRevocationList
from app.auth.tokens import TokenIssuer
from app.auth.verifier import TokenVerifier
from app.core.config import AppConfig
from app.core.detached import DetachedTaskRunner
from app.core.logging import setup_logging
from app.core.mongo_migrations import apply_mongo_migrations

load_dotenv()
LOGGER = logging.getLogger(__name__)

APP_ROOT = Path(__file__).resolve().parent


def create_app(config: AppConfig | None = None, app_root: Path | None = None) -> FastAPI:
    app_config = config or AppConfig.from_env()
    app_config.validate()
    root = app_root or APP_ROOT
    setup_logging(app_config.logging.level)

    app = FastAPI(title="Petites Annonces Auth API", version=app_config.api_version)
    apply_mongo_migrations()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_config.security.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    repository = IdentityRepository(root)
    runner = DetachedTaskRunner()
    identity_cache = InMemoryIdentityCache(app_config.auth.identity_cache_ttl_seconds)
    revocations = InMemoryRevocationList(max_entries=app_config.auth.revocation_set_max_entries)
    issuer = TokenIssuer(repository, app_config.auth)
    verifier = TokenVerifier(
        issuer=issuer,
        identities=repository,
        cache=identity_cache,
        revocations=revocations,
        runner=runner,
    )
    guard = AccountGuard(
        repository,
        max_attempts=app_config.auth.max_login_attempts,
        lockout_seconds=app_config.auth.lockout_seconds,
    )
    auth_service = AuthService(
        store=repository,
        issuer=issuer,
        verifier=verifier,
        guard=guard,
        notifier=EmailNotifier(app_config.notifications),
        runner=runner,
        config=app_config.auth,
    )
    state_db_path = (root / app_config.security.state_sqlite_path).resolve()
    rate_limiter = EndpointRateLimiter(
        database_path=state_db_path,
        rules=rules_from_config(app_config.security),
    )

    app.include_router(create_auth_router(auth_service, rate_limiter, config=app_config))
    # Registered before the shared middleware so it runs inside them.
    app.middleware("http")(create_auth_middleware(verifier, version=app_config.api_version))
    register_http_middleware(app, config=app_config, logger=LOGGER)
    register_exception_handlers(app, config=app_config, logger=LOGGER)

    register_runtime_routes(
        app,
        deps=RuntimeRouteDeps(
            config=app_config,
            janitor=CacheJanitor(
                identity_cache,
                revocations,
                interval_seconds=app_config.auth.cache_sweep_interval_seconds,
            ),
            runner=runner,
            rate_limiter=rate_limiter,
            uses_mongo=lambda: repository.uses_mongo,
        ),
    )
    LOGGER.info(
        "app_created",
        extra={"event": f"env={app_config.environment},mongo={repository.uses_mongo}"},
    )
    return app


app = create_app()
