"""
Dependency Injection (di/)

Tests Container registration, resolution scopes, auto-wiring, cycles and
errors.
"""

import pytest

from corvus.di import (
    ClassProvider,
    Container,
    DependencyCycleError,
    DIError,
    ProviderNotFoundError,
    ValueProvider,
    token_key,
)


class Config:
    pass


class Repo:
    def __init__(self, config: Config):
        self.config = config


class Service:
    def __init__(self, repo: Repo, label: str = "default"):
        self.repo = repo
        self.label = label


class AsyncReady:
    def __init__(self):
        self.ready = False

    async def async_init(self):
        self.ready = True


class Closable:
    def __init__(self):
        self.closed = False

    async def shutdown(self):
        self.closed = True


class NeedsUrl:
    def __init__(self, url: "db.url"):
        self.url = url


class CycleA:
    def __init__(self, b: "CycleB"):
        self.b = b


class CycleB:
    def __init__(self, a: CycleA):
        self.a = a


class Unannotated:
    def __init__(self, thing):
        self.thing = thing


# ============================================================================
# Registration
# ============================================================================

class TestRegistration:

    def test_token_key(self):
        assert token_key("name") == "name"
        assert token_key(Config) == f"{Config.__module__}.Config"

    def test_register_value(self, container):
        config = Config()
        container.register_value(Config, config)
        assert container.is_registered(Config)

    def test_duplicate_registration(self, container):
        container.register_value(Config, Config())
        with pytest.raises(ValueError):
            container.register_value(Config, Config())

    def test_same_provider_twice_is_noop(self, container):
        provider = ValueProvider(Config(), token=Config)
        container.register(provider)
        container.register(provider)

    def test_missing_annotation(self):
        with pytest.raises(DIError):
            ClassProvider(Unannotated)


# ============================================================================
# Resolution
# ============================================================================

class TestResolution:

    @pytest.mark.asyncio
    async def test_value(self, container):
        config = Config()
        container.register_value(Config, config)
        assert await container.resolve_async(Config) is config

    @pytest.mark.asyncio
    async def test_auto_wiring(self, container):
        service = await container.resolve_async(Service)
        assert isinstance(service.repo, Repo)
        assert isinstance(service.repo.config, Config)
        assert service.label == "default"

    @pytest.mark.asyncio
    async def test_auto_wired_classes_are_transient(self, container):
        first = await container.resolve_async(Config)
        second = await container.resolve_async(Config)
        assert first is not second

    @pytest.mark.asyncio
    async def test_app_scope_cached(self, container):
        container.register_class(Repo, scope="app")
        assert await container.resolve_async(Repo) is await container.resolve_async(Repo)

    @pytest.mark.asyncio
    async def test_app_scope_shared_with_request_scope(self, container):
        container.register_class(Repo, scope="app")
        request_scope = container.create_request_scope()
        assert await request_scope.resolve_async(Repo) is await container.resolve_async(Repo)

    @pytest.mark.asyncio
    async def test_request_scope_isolated(self, container):
        container.register_class(Config, scope="request")
        one = container.create_request_scope()
        two = container.create_request_scope()
        assert await one.resolve_async(Config) is await one.resolve_async(Config)
        assert await one.resolve_async(Config) is not await two.resolve_async(Config)

    @pytest.mark.asyncio
    async def test_async_init(self, container):
        instance = await container.resolve_async(AsyncReady)
        assert instance.ready

    @pytest.mark.asyncio
    async def test_unknown_string_token(self, container):
        with pytest.raises(ProviderNotFoundError):
            await container.resolve_async("db.url")
        assert await container.resolve_async("db.url", optional=True) is None

    @pytest.mark.asyncio
    async def test_missing_dependency_names_requester(self, container):
        with pytest.raises(ProviderNotFoundError) as exc_info:
            await container.resolve_async(NeedsUrl)
        assert exc_info.value.token == "db.url"
        assert exc_info.value.requested_by == token_key(NeedsUrl)
        assert "Requested by" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_top_level_miss_has_no_requester(self, container):
        with pytest.raises(ProviderNotFoundError) as exc_info:
            await container.resolve_async("db.url")
        assert exc_info.value.requested_by is None

    @pytest.mark.asyncio
    async def test_cycle_detected(self, container):
        with pytest.raises(DependencyCycleError) as exc_info:
            await container.resolve_async(CycleA)
        assert len(exc_info.value.cycle) == 3

    @pytest.mark.asyncio
    async def test_shutdown_runs_finalizers(self, container):
        container.register_class(Closable, scope="app")
        instance = await container.resolve_async(Closable)
        await container.shutdown()
        assert instance.closed
