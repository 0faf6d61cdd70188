"""
Controller declarations and the route descriptor resolver.
"""

import pytest

from corvus.config import RouteGroup
from corvus.controller import (
    ControllerRegistry,
    GET,
    HTTPMethod,
    POST,
    RouteEntry,
    controller,
    register_controller,
)
from corvus.di import Container, DIError
from corvus.faults import HandlerNotFoundFault, MetadataNotFoundFault
from corvus.http import HTTPApp
from corvus.resolver import bind_handler, build_group
from corvus.response import Response
from corvus.testing import TestClient, make_ctx, make_request


class Greeter:
    def greet(self, name):
        return f"hello {name}"


@controller("/users")
class UsersController:
    def __init__(self, greeter: Greeter):
        self.greeter = greeter

    @GET("/")
    async def index(self, request, ctx):
        return {"users": ["ada", "linus"]}

    @GET("/{name}")
    async def show(self, request, ctx):
        return {"greeting": self.greeter.greet(request.path_params["name"])}

    @POST("/")
    def create(self, request, ctx):
        return Response.json({"created": True}, status=201)


@controller("/a")
class FirstController:

    @GET("/x")
    def x(self, request, ctx):
        return "A"


@controller("/a")
class SecondController:

    @GET("/x")
    def x(self, request, ctx):
        return "B"


class Undeclared:
    pass


class Plain:
    def ping(self, request, ctx):
        return "pong"


class NeedsMissing:
    def __init__(self, value):
        self.value = value


register_controller(Plain, "/plain", [RouteEntry("get", "/ping", "ping")])


async def mount(*groups, container=None):
    app = HTTPApp()
    registry = ControllerRegistry()
    for group in groups:
        built = await build_group(group, container or Container(), registry)
        app.mount(built.path, list(built.middlewares), built.router)
    return app


# ============================================================================
# Declarations
# ============================================================================

class TestControllerDeclarations:

    def test_decorated_routes_in_definition_order(self):
        registry = ControllerRegistry()
        assert registry.get_metadata("prefix", UsersController) == "/users"
        routes = registry.get_metadata("routes", UsersController)
        assert [(r.method, r.path, r.handler_name) for r in routes] == [
            (HTTPMethod.GET, "/", "index"),
            (HTTPMethod.GET, "/{name}", "show"),
            (HTTPMethod.POST, "/", "create"),
        ]

    def test_register_controller_normalizes_method(self):
        routes = ControllerRegistry().get_metadata("routes", Plain)
        assert routes[0].method is HTTPMethod.GET

    def test_missing_metadata(self):
        registry = ControllerRegistry()
        assert Undeclared not in registry
        with pytest.raises(MetadataNotFoundFault) as exc_info:
            registry.get_metadata("routes", Undeclared)
        assert exc_info.value.metadata["key"] == "routes"

    def test_unknown_key(self):
        with pytest.raises(MetadataNotFoundFault):
            ControllerRegistry().get_metadata("middlewares", UsersController)

    def test_define_overrides(self):
        registry = ControllerRegistry()
        registry.define(Undeclared, "/u", [RouteEntry(HTTPMethod.GET, "/", "index")])
        assert Undeclared in registry
        assert registry.get_metadata("prefix", Undeclared) == "/u"

    def test_descriptor_not_inherited(self):
        class Child(UsersController):
            pass

        with pytest.raises(MetadataNotFoundFault):
            ControllerRegistry().descriptor(Child)

    def test_route_middlewares_recorded(self):
        async def guard(request, ctx, next):
            return await next(request, ctx)

        @controller()
        class Guarded:
            @GET("/", middlewares=[guard])
            def index(self, request, ctx):
                return "ok"

        entry = ControllerRegistry().get_metadata("routes", Guarded)[0]
        assert entry.middlewares == (guard,)


# ============================================================================
# Resolver
# ============================================================================

class TestResolver:

    @pytest.mark.asyncio
    async def test_group_path_prefix_route_path(self):
        app = await mount(RouteGroup(path="/api", controllers=[UsersController]))
        client = TestClient(app)

        resp = await client.get("/api/users/ada")
        assert resp.status_code == 200
        assert resp.json() == {"greeting": "hello ada"}

    @pytest.mark.asyncio
    async def test_other_methods_do_not_reach_handler(self):
        app = await mount(RouteGroup(path="/api", controllers=[UsersController]))
        client = TestClient(app)

        assert (await client.post("/api/users")).status_code == 201
        assert (await client.delete("/api/users/ada")).status_code == 404
        assert (await client.put("/api/users")).status_code == 404

    @pytest.mark.asyncio
    async def test_colliding_groups_first_declared_wins(self):
        app = await mount(
            RouteGroup(path="", controllers=[FirstController]),
            RouteGroup(path="", controllers=[SecondController]),
        )
        resp = await TestClient(app).get("/a/x")
        assert resp.text == "A"

    @pytest.mark.asyncio
    async def test_group_middlewares_and_route_middlewares(self):
        calls = []

        async def group_mw(request, ctx, next):
            calls.append("group")
            return await next(request, ctx)

        async def route_mw(request, ctx, next):
            calls.append("route")
            return await next(request, ctx)

        @controller("/m")
        class Mw:
            @GET("/", middlewares=[route_mw])
            def index(self, request, ctx):
                calls.append("handler")
                return "ok"

        app = await mount(RouteGroup(middlewares=[group_mw], controllers=[Mw]))
        await TestClient(app).get("/m")
        assert calls == ["group", "route", "handler"]

    @pytest.mark.asyncio
    async def test_group_callback_receives_handler_error(self):
        @controller("/err")
        class Failing:
            @GET("/")
            def index(self, request, ctx):
                raise LookupError("missing thing")

        def callback(error, request, ctx):
            return Response.json({"error": type(error).__name__}, status=404)

        app = await mount(RouteGroup(controllers=[Failing], callback=callback))
        resp = await TestClient(app).get("/err")
        assert resp.status_code == 404
        assert resp.json() == {"error": "LookupError"}

    @pytest.mark.asyncio
    async def test_default_callback_forwards(self):
        @controller("/err")
        class Failing:
            @GET("/")
            def index(self, request, ctx):
                raise LookupError("missing thing")

        app = await mount(RouteGroup(controllers=[Failing]))
        resp = await TestClient(app).get("/err")
        assert resp.status_code == 500

    @pytest.mark.asyncio
    async def test_instances_resolved_through_container(self):
        container = Container()
        greeter = Greeter()
        container.register_value(Greeter, greeter)

        built = await build_group(RouteGroup(controllers=[UsersController]), container, ControllerRegistry())
        route = built.router.routes[0]
        assert route.path == "/users"
        assert route.name == "UsersController.index"

    @pytest.mark.asyncio
    async def test_missing_metadata_propagates(self):
        with pytest.raises(MetadataNotFoundFault):
            await build_group(RouteGroup(controllers=[Undeclared]), Container(), ControllerRegistry())

    @pytest.mark.asyncio
    async def test_resolution_failure_propagates(self):
        register_controller(NeedsMissing, "/n", [])
        with pytest.raises(DIError):
            await build_group(RouteGroup(controllers=[NeedsMissing]), Container(), ControllerRegistry())

    def test_missing_handler_method(self):
        with pytest.raises(HandlerNotFoundFault):
            bind_handler(Plain(), "nope")

    @pytest.mark.asyncio
    async def test_bound_handler_accepts_sync_methods(self):
        handler = bind_handler(Plain(), "ping")
        req = make_request()
        resp = await handler(req, make_ctx(req))
        assert resp.body == b"pong"
