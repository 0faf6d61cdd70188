"""
Application builder and startup sequence.

Tests the fluent configuration API, the RuntimeConfig snapshot and the
post-listen startup sequence (ordering, database gating, failure handling)
driven through ``Corvus.bootstrap``.
"""

import logging
from dataclasses import FrozenInstanceError

import pytest

from corvus import (
    AppModule,
    ConfigurationFault,
    Corvus,
    DatabaseRegistry,
    GET,
    JSONBodyParser,
    LifecyclePhase,
    MemoryDatabase,
    RequestLogger,
    RouteGroup,
    Settings,
    URLEncodedBodyParser,
    controller,
)
from corvus.lifecycle import StartupStage
from corvus.testing import TestClient


@controller("/models")
class ModelsController:
    def __init__(self, databases: DatabaseRegistry):
        self.databases = databases

    @GET("/")
    async def index(self, request, ctx):
        names = []
        for database in self.databases:
            names.extend(self.databases.models(database))
        return {"models": sorted(names)}

    @GET("/echo")
    async def echo(self, request, ctx):
        return {"payload": request.payload, "query": request.query_params.to_dict()}


class Undeclared:
    pass


async def plugin(request, ctx, next):
    response = await next(request, ctx)
    response.headers["x-plugin"] = "1"
    return response


async def other_plugin(request, ctx, next):
    return await next(request, ctx)


def layer_names(app):
    return [layer.name for layer in app.asgi.stack]


# ============================================================================
# Fluent configuration
# ============================================================================

class TestConfiguration:

    def test_prod_mode_is_monotonic(self):
        app = Corvus()
        assert app.is_prod is False
        app.prod_mode(True)
        app.prod_mode(False)
        assert app.is_prod is True

    def test_fluent_calls_return_self(self):
        app = Corvus()
        assert app.prod_mode(False) is app
        assert app.use(plugin) is app
        assert app.plugins([]) is app
        assert app.set_body_parser({}) is app
        assert app.set_cors(plugin) is app
        assert app.set_logger(plugin) is app

    def test_plugins_installed_immediately_in_order(self):
        app = Corvus()
        app.plugins([plugin, other_plugin])
        app.use(plugin)
        assert layer_names(app) == ["plugin:plugin", "plugin:other_plugin", "plugin:plugin"]

    def test_empty_body_parser_config_is_noop(self):
        custom_json = JSONBodyParser(limit=10)
        custom_form = URLEncodedBodyParser(limit=10)
        app = Corvus().set_body_parser(json=custom_json, urlencoded=custom_form)
        app.set_body_parser({})
        pipeline = app.build().pipeline
        assert pipeline.json_parser is custom_json
        assert pipeline.urlencoded_parser is custom_form

    def test_body_parser_replaces_only_given_keys(self):
        app = Corvus()
        original_form = app.build().pipeline.urlencoded_parser
        custom_json = JSONBodyParser(limit=10)
        app.set_body_parser({"json": custom_json})
        pipeline = app.build().pipeline
        assert pipeline.json_parser is custom_json
        assert pipeline.urlencoded_parser is original_form

    def test_unknown_body_parser_key(self):
        with pytest.raises(ConfigurationFault):
            Corvus().set_body_parser({"xml": plugin})

    def test_default_parser_limits(self):
        pipeline = Corvus().build().pipeline
        assert pipeline.json_parser.limit == 50 * 1024 * 1024
        assert pipeline.urlencoded_parser.parameter_limit == 100_000_000

    def test_set_body_limits(self):
        pipeline = Corvus().set_body_limits(2048, 50).build().pipeline
        assert pipeline.json_parser.limit == 2048
        assert pipeline.urlencoded_parser.limit == 2048
        assert pipeline.urlencoded_parser.parameter_limit == 50

    def test_build_snapshot_is_frozen(self):
        app = Corvus()
        snapshot = app.build()
        app.prod_mode(True)
        app.set_logger(plugin)
        assert snapshot.prod is False
        assert snapshot.pipeline.logger is None
        assert snapshot.verbose is True
        with pytest.raises(FrozenInstanceError):
            snapshot.prod = True

    def test_from_settings(self):
        settings = Settings(prod=True, body_limit=4096, parameter_limit=7, port=9000)
        app = Corvus.from_settings(AppModule(), settings)
        assert app.is_prod
        assert app.settings.port == 9000
        pipeline = app.build().pipeline
        assert pipeline.json_parser.limit == 4096
        assert pipeline.urlencoded_parser.parameter_limit == 7

    def test_route_groups_from_mappings(self):
        module = AppModule(routes=[{"path": "/api", "controllers": [ModelsController]}])
        assert module.routes == (RouteGroup(path="/api", controllers=(ModelsController,)),)

    def test_database_registry_in_container(self):
        app = Corvus()
        assert app.container.is_registered(DatabaseRegistry)


# ============================================================================
# Startup sequence
# ============================================================================

class TestBootstrap:

    @pytest.mark.asyncio
    async def test_layer_order(self):
        module = AppModule(routes=[RouteGroup(path="/api", controllers=[ModelsController])])
        app = Corvus(module).use(plugin)
        assert await app.bootstrap() is True
        assert layer_names(app) == [
            "plugin:plugin",
            "cors",
            "json_parser",
            "urlencoded_parser",
            "logger",
            "router:/api",
            "unhandled_request",
        ]
        assert app.sequence.phase is LifecyclePhase.READY
        assert app.sequence.completed == list(StartupStage)

    @pytest.mark.asyncio
    async def test_serves_routes_with_models(self):
        db = MemoryDatabase({"User": dict, "Post": dict}, name="main")
        module = AppModule(databases=[db], routes=[RouteGroup(path="/api", controllers=[ModelsController])])
        app = Corvus(module)
        await app.bootstrap()

        client = TestClient(app)
        resp = await client.get("/api/models")
        assert resp.status_code == 200
        assert resp.json() == {"models": ["Post", "User"]}
        assert resp.header("x-plugin") is None
        assert resp.header("access-control-allow-origin") == "*"

    @pytest.mark.asyncio
    async def test_body_parsed_before_handler(self):
        app = Corvus(AppModule(routes=[RouteGroup(controllers=[ModelsController])]))
        await app.bootstrap()
        resp = await TestClient(app).post("/models/echo?x=1", json={"a": 1})
        assert resp.status_code == 405

        resp = await TestClient(app).request("GET", "/models/echo?x=1", json={"a": 1})
        assert resp.json() == {"payload": {"a": 1}, "query": {"x": "1"}}

    @pytest.mark.asyncio
    async def test_zero_routes_unmatched_get_is_405(self):
        app = Corvus()
        await app.bootstrap()
        resp = await TestClient(app).get("/nope")
        assert resp.status_code == 405
        assert "Invalid Request" in resp.text
        assert "/nope" in resp.json()["url"]

    @pytest.mark.asyncio
    async def test_databases_connected_before_routes_mounted(self):
        observed = {}
        app = None

        class ObservingDatabase(MemoryDatabase):
            async def connect(self):
                observed["routes_at_connect"] = list(app.routes())
                observed["layers_at_connect"] = layer_names(app)
                await super().connect()

        module = AppModule(
            databases=[ObservingDatabase(name="obs")],
            routes=[RouteGroup(controllers=[ModelsController])],
        )
        app = Corvus(module)
        await app.bootstrap()

        assert observed["routes_at_connect"] == []
        assert observed["layers_at_connect"] == ["cors", "json_parser", "urlencoded_parser", "logger"]
        assert len(app.routes()) == 2

    @pytest.mark.asyncio
    async def test_failing_database_mounts_nothing(self, corvus_logs):
        good = MemoryDatabase({"User": dict}, name="good", delay=0.01)
        bad = MemoryDatabase(name="bad", fail_with=ConnectionError("refused"))
        module = AppModule(databases=[good, bad], routes=[RouteGroup(controllers=[ModelsController])])
        app = Corvus(module)

        assert await app.bootstrap() is False

        assert app.routes() == []
        assert "unhandled_request" not in layer_names(app)
        assert app.sequence.phase is LifecyclePhase.ERROR
        assert app.sequence.completed == [StartupStage.MIDDLEWARE]

        errors = [r for r in corvus_logs.records if r.name == "corvus.lifecycle" and r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert "databases" in errors[0].getMessage()
        assert "bad" in errors[0].getMessage()

        resp = await TestClient(app).get("/models")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_failing_resolution_mounts_no_group(self, corvus_logs):
        module = AppModule(routes=[
            RouteGroup(path="/ok", controllers=[ModelsController]),
            RouteGroup(path="/broken", controllers=[Undeclared]),
        ])
        app = Corvus(module)
        assert await app.bootstrap() is False
        assert app.routes() == []
        assert any("routes" in r.getMessage() for r in corvus_logs.records if r.name == "corvus.lifecycle")

    @pytest.mark.asyncio
    async def test_database_verbosity_follows_prod_mode(self):
        dev_db, prod_db = MemoryDatabase(name="dev"), MemoryDatabase(name="prod")
        await Corvus(AppModule(databases=[dev_db])).bootstrap()
        await Corvus(AppModule(databases=[prod_db])).prod_mode().bootstrap()
        assert dev_db.verbose is True
        assert prod_db.verbose is False

    @pytest.mark.asyncio
    async def test_custom_logger_replaces_default(self):
        custom = RequestLogger("combined")
        app = Corvus().set_logger(custom)
        await app.bootstrap()
        assert app.asgi.stack.layers[3].middleware is custom

    @pytest.mark.asyncio
    async def test_configuration_after_start_raises(self):
        app = Corvus()
        await app.bootstrap()
        with pytest.raises(ConfigurationFault):
            app.use(plugin)
        with pytest.raises(ConfigurationFault):
            app.prod_mode(True)
        with pytest.raises(ConfigurationFault):
            app.set_body_parser({})
        with pytest.raises(ConfigurationFault):
            await app.bootstrap()

    @pytest.mark.asyncio
    async def test_asgi_lifespan_bootstraps(self):
        db = MemoryDatabase(name="life")
        app = Corvus(AppModule(databases=[db]))
        messages = iter([{"type": "lifespan.startup"}, {"type": "lifespan.shutdown"}])
        sent = []

        async def receive():
            return next(messages)

        async def send(message):
            sent.append(message["type"])

        await app({"type": "lifespan"}, receive, send)
        assert app.started
        assert sent == ["lifespan.startup.complete", "lifespan.shutdown.complete"]
        assert db in app.databases
        assert db.connected is False


# ============================================================================
# Lifecycle events and shutdown
# ============================================================================

def on_sequence_event(app, handler):
    original_begin = app._begin

    def begin():
        sequence = original_begin()
        sequence.on_event(handler)
        return sequence

    app._begin = begin


def record_events(app):
    events = []
    on_sequence_event(app, lambda event: events.append((event.phase, event.stage)))
    return events


class TestShutdown:

    @pytest.mark.asyncio
    async def test_event_sequence_on_success(self):
        db = MemoryDatabase(name="main")
        app = Corvus(AppModule(databases=[db], routes=[RouteGroup(controllers=[ModelsController])]))
        events = record_events(app)

        await app.bootstrap()
        assert db.connected is True
        await app.shutdown()

        assert events == [
            (LifecyclePhase.STARTING, None),
            (LifecyclePhase.READY, None),
            (LifecyclePhase.STOPPING, None),
            (LifecyclePhase.STOPPED, None),
        ]
        assert app.sequence.phase is LifecyclePhase.STOPPED
        assert db.connected is False

    @pytest.mark.asyncio
    async def test_event_sequence_on_failing_database(self):
        bad = MemoryDatabase(name="bad", fail_with=ConnectionError("refused"))
        app = Corvus(AppModule(databases=[bad]))
        events = record_events(app)

        assert await app.bootstrap() is False
        await app.shutdown()

        assert events == [
            (LifecyclePhase.STARTING, None),
            (LifecyclePhase.ERROR, StartupStage.DATABASES),
            (LifecyclePhase.STOPPING, None),
            (LifecyclePhase.STOPPED, None),
        ]
        assert isinstance(app.sequence.error, Exception)

    @pytest.mark.asyncio
    async def test_shutdown_after_failed_routes_disconnects(self):
        db = MemoryDatabase(name="good")
        app = Corvus(AppModule(databases=[db], routes=[RouteGroup(controllers=[Undeclared])]))
        assert await app.bootstrap() is False
        assert db.connected is True

        await app.shutdown()
        await app.shutdown()
        assert db.connected is False
        assert app.sequence.phase is LifecyclePhase.STOPPED

    @pytest.mark.asyncio
    async def test_failing_event_handler_is_logged(self, corvus_logs):
        app = Corvus()
        on_sequence_event(app, lambda event: 1 / 0)
        assert await app.bootstrap() is True
        messages = [r.getMessage() for r in corvus_logs.records if r.name == "corvus.lifecycle"]
        assert any("Lifecycle event handler error" in message for message in messages)
