"""End-to-end tests: LocalHost loading the federation container and driving kernels."""

from __future__ import annotations

import json

import pytest

from chatkernel.config.settings_bridge import JsonSettingRegistry
from chatkernel.federation.container import KERNEL_PACKAGE, SETTINGS_PACKAGE, FederationContainer
from chatkernel.federation.registry import UnknownModule
from chatkernel.kernel.host import (
    IKernelSpecs,
    InMemoryKernelSpecs,
    LocalHost,
    LocalHostContext,
    PluginActivationError,
    UnknownKernelSpec,
)
from chatkernel.kernel.kernel import ExecutionKernel
from chatkernel.plugins.kernel_plugin import PLUGIN_ID
from chatkernel.plugins.sdk import PluginDescriptor, Token


async def _loaded_host(runtime, progress=None, setting_registry=None) -> LocalHost:
    host = LocalHost(setting_registry=setting_registry)
    await host.load(FederationContainer(runtime=runtime, progress=progress))
    return host


class TestLocalHostContext:
    def test_execution_count_bumped_on_execute_only(self):
        context = LocalHostContext({"id": "k"})
        context.begin_request("execute_request")
        context.begin_request("kernel_info_request")
        assert context.execution_count == 1
        assert context.parent_header["msg_type"] == "kernel_info_request"
        assert context.parent_header["session"] == "k"

    def test_outputs_recorded_and_forwarded(self):
        seen = []
        context = LocalHostContext({"on_output": lambda *a: seen.append(a)})
        header = context.begin_request("execute_request")
        context.stream({"name": "stdout", "text": "Hi"}, header)
        context.publish_execute_error({"ename": "Error", "evalue": "x", "traceback": []})

        assert [o["msg_type"] for o in context.outputs] == ["stream", "error"]
        assert seen[0] == ("stream", {"name": "stdout", "text": "Hi"}, header)
        assert context.text_output() == "Hi"

    def test_generated_id(self):
        assert LocalHostContext().id


class TestInMemoryKernelSpecs:
    def test_register_and_get(self):
        specs = InMemoryKernelSpecs()

        async def create(options):
            return None

        specs.register({"spec": {"name": "k"}, "create": create})
        assert "k" in specs
        assert specs.specs == {"k": {"name": "k"}}
        assert specs.get("k")["create"] is create

    def test_register_requires_create(self):
        with pytest.raises(ValueError):
            InMemoryKernelSpecs().register({"spec": {"name": "k"}})

    def test_unknown_spec(self):
        with pytest.raises(UnknownKernelSpec):
            InMemoryKernelSpecs().get("missing")


class TestLoad:
    @pytest.mark.asyncio
    async def test_registry_contents(self):
        host = LocalHost()
        assert KERNEL_PACKAGE in host.registry
        assert SETTINGS_PACKAGE not in host.registry

    @pytest.mark.asyncio
    async def test_settings_package_shared_with_registry(self, tmp_path):
        host = LocalHost(setting_registry=JsonSettingRegistry(tmp_path, watch=False))
        assert SETTINGS_PACKAGE in host.registry

    @pytest.mark.asyncio
    async def test_load_activates_plugin_and_registers_spec(self, stub_runtime):
        host = await _loaded_host(stub_runtime)
        assert [p.id for p in host.plugins] == [PLUGIN_ID]
        assert host.kernelspecs.specs["http-chat"]["display_name"] == "HTTP Chat (ACP)"

    @pytest.mark.asyncio
    async def test_unknown_module_propagates(self, stub_runtime):
        with pytest.raises(UnknownModule):
            await LocalHost().load(FederationContainer(runtime=stub_runtime), "./nope")

    @pytest.mark.asyncio
    async def test_missing_required_capability(self):
        host = LocalHost()
        plugin = PluginDescriptor(id="x:y", activate=lambda app, s: None, requires=[Token("nope")])
        with pytest.raises(PluginActivationError, match="missing required capability"):
            await host.activate(plugin)

    @pytest.mark.asyncio
    async def test_optional_capability_absent_passes_none(self):
        host = LocalHost()
        received = []
        plugin = PluginDescriptor(
            id="x:y",
            activate=lambda app, specs, opt: received.append((specs, opt)),
            requires=[IKernelSpecs],
            optional=[Token("nope")],
        )
        await host.activate(plugin)
        assert received == [(host.kernelspecs, None)]


class TestKernels:
    @pytest.mark.asyncio
    async def test_prompt_round_trip(self, stub_runtime):
        host = await _loaded_host(stub_runtime)
        kernel = await host.start_kernel("http-chat")

        reply = await host.execute(kernel, "hi")

        assert isinstance(kernel, ExecutionKernel)
        assert reply["status"] == "ok"
        assert reply["execution_count"] == 1
        assert kernel.context.text_output() == "Hello"

    @pytest.mark.asyncio
    async def test_execution_count_increments(self, stub_runtime):
        host = await _loaded_host(stub_runtime)
        kernel = await host.start_kernel("http-chat")
        await host.execute(kernel, "%ai help")
        reply = await host.execute(kernel, "%ai model")
        assert reply["execution_count"] == 2

    @pytest.mark.asyncio
    async def test_output_sink(self, stub_runtime):
        host = await _loaded_host(stub_runtime)
        seen = []
        kernel = await host.start_kernel("http-chat", on_output=lambda t, c, h: seen.append(c["text"]))
        await host.execute(kernel, "hi")
        assert seen == ["He", "llo"]

    @pytest.mark.asyncio
    async def test_kernels_have_independent_sessions(self, stub_runtime):
        host = await _loaded_host(stub_runtime)
        first = await host.start_kernel("http-chat")
        second = await host.start_kernel("http-chat")

        await host.execute(first, "%ai model B")

        assert first.session.get_model_name() == "B"
        assert second.session.get_model_name() is None

    @pytest.mark.asyncio
    async def test_unknown_kernel_name(self, stub_runtime):
        host = await _loaded_host(stub_runtime)
        with pytest.raises(UnknownKernelSpec):
            await host.start_kernel("python3")

    @pytest.mark.asyncio
    async def test_progress_reaches_channel(self, make_runtime, progress):
        from chatkernel.cognition.llm_client import Availability

        events = []
        progress.subscribe(events.append)
        host = await _loaded_host(make_runtime(availability=Availability.DOWNLOADABLE), progress)
        kernel = await host.start_kernel("http-chat")

        reply = await host.execute(kernel, "hi")

        assert reply["status"] == "ok"
        assert events[-1].progress == 1.0

    @pytest.mark.asyncio
    async def test_shutdown_closes_everything(self, stub_runtime):
        host = await _loaded_host(stub_runtime)
        kernel = await host.start_kernel("http-chat")
        await host.execute(kernel, "hi")

        await host.shutdown()

        assert host.kernels == []
        assert stub_runtime.handles[0].closed
        reply = await host.execute(kernel, "hi")
        assert reply["status"] == "error"


class TestSettings:
    @pytest.mark.asyncio
    async def test_settings_default_model_used(self, stub_runtime, tmp_path):
        (tmp_path / "http-chat-kernel__plugin.json").write_text(
            json.dumps({"defaultModel": "mistral:7b"})
        )
        registry = JsonSettingRegistry(tmp_path, watch=False)
        host = await _loaded_host(stub_runtime, setting_registry=registry)
        kernel = await host.start_kernel("http-chat")

        listing = await host.execute(kernel, "%ai model")
        assert listing["status"] == "ok"
        assert "default: mistral:7b" in kernel.context.text_output()

        await host.execute(kernel, "hi")
        assert stub_runtime.created == ["mistral:7b"]
        await host.shutdown()

    @pytest.mark.asyncio
    async def test_settings_change_applies_to_next_init(self, stub_runtime, tmp_path):
        registry = JsonSettingRegistry(tmp_path, watch=False)
        host = await _loaded_host(stub_runtime, setting_registry=registry)

        registry.save(PLUGIN_ID, {"defaultModel": "tinyllama:1.1b"})
        (await registry.load(PLUGIN_ID)).reload()

        kernel = await host.start_kernel("http-chat")
        await host.execute(kernel, "hi")
        assert stub_runtime.created == ["tinyllama:1.1b"]
        await host.shutdown()

    @pytest.mark.asyncio
    async def test_unknown_settings_model_fails_at_init(self, stub_runtime, tmp_path):
        registry = JsonSettingRegistry(tmp_path, watch=False)
        registry.save(PLUGIN_ID, {"defaultModel": "gpt-4"})
        host = await _loaded_host(stub_runtime, setting_registry=registry)
        kernel = await host.start_kernel("http-chat")

        reply = await host.execute(kernel, "hi")

        assert reply["status"] == "error"
        assert "gpt-4" in reply["evalue"]
        await host.shutdown()
