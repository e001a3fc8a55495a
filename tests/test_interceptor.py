import asyncio
import re
import sys
import unittest
from pathlib import Path
from unittest.mock import AsyncMock

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from coderagent.hooks import HookSystem, ToolLifecycleCallbacks
from coderagent.hooks.system import HookEvent
from coderagent.hooks.interceptor import (
    CorrelationStore,
    ToolCallInterceptor,
    create_correlation_key,
    generate_call_id,
    install_tool_call_interceptor,
    is_error_response,
)


class Recorder:
    def __init__(self) -> None:
        self.before: list[tuple[str, object, str]] = []
        self.after: list[tuple[str, object, object, str, bool]] = []

    def callbacks(self) -> ToolLifecycleCallbacks:
        return ToolLifecycleCallbacks(
            on_before_tool=lambda name, args, call_id: self.before.append((name, args, call_id)),
            on_after_tool=lambda name, args, resp, call_id, ok: self.after.append((name, args, resp, call_id, ok)),
        )


class TestCallIds(unittest.TestCase):
    def test_format(self) -> None:
        call_id = generate_call_id("read_file")
        self.assertRegex(call_id, r"^read_file-\d+-\d+$")

    def test_unique_and_increasing(self) -> None:
        ids = [generate_call_id("t") for _ in range(50)]
        self.assertEqual(len(set(ids)), 50)
        counters = [int(re.match(r"^t-\d+-(\d+)$", i).group(1)) for i in ids]
        self.assertEqual(counters, sorted(counters))

    def test_key_ignores_dict_order(self) -> None:
        self.assertEqual(
            create_correlation_key("t", {"a": 1, "b": [1, 2]}),
            create_correlation_key("t", {"b": [1, 2], "a": 1}),
        )
        self.assertNotEqual(create_correlation_key("t", {"a": 1}), create_correlation_key("u", {"a": 1}))

    def test_key_for_unserializable_input(self) -> None:
        key = create_correlation_key("t", {"obj": object()})
        self.assertRegex(key, r"^t:\d+$")


class TestErrorClassification(unittest.TestCase):
    def test_failures(self) -> None:
        self.assertTrue(is_error_response({"error": "boom"}))
        self.assertTrue(is_error_response({"isError": True}))
        self.assertTrue(is_error_response({"success": False}))
        self.assertTrue(is_error_response({"message": "Fatal ERROR while reading"}))

    def test_successes(self) -> None:
        self.assertFalse(is_error_response(None))
        self.assertFalse(is_error_response("error"))
        self.assertFalse(is_error_response(42))
        self.assertFalse(is_error_response({"error": None, "output": "ok"}))
        self.assertFalse(is_error_response({"success": True, "message": "done"}))

    def test_attribute_objects(self) -> None:
        class Response:
            isError = True

        self.assertTrue(is_error_response(Response()))


class TestCorrelationStore(unittest.TestCase):
    def test_ttl_expiry(self) -> None:
        now = [0.0]
        store = CorrelationStore(ttl_seconds=10, clock=lambda: now[0])
        store.put("k", "id-1")
        now[0] = 11.0
        self.assertIsNone(store.pop("k"))
        self.assertEqual(len(store), 0)

    def test_oldest_dropped_when_full(self) -> None:
        store = CorrelationStore(max_entries=2, ttl_seconds=None)
        store.put("a", "1")
        store.put("b", "2")
        store.put("c", "3")
        self.assertNotIn("a", store)
        self.assertEqual(store.pop("b"), "2")
        self.assertEqual(store.pop("c"), "3")

    def test_pop_removes_entry(self) -> None:
        store = CorrelationStore()
        store.put("k", "id")
        self.assertEqual(store.pop("k"), "id")
        self.assertIsNone(store.pop("k"))


class TestHookSystem(unittest.IsolatedAsyncioTestCase):
    async def test_failing_hook_is_recorded(self) -> None:
        hooks = HookSystem()

        async def broken(_hook_input: object) -> None:
            raise RuntimeError("hook crashed")

        hooks.register(HookEvent.AFTER_TOOL, "broken", broken)
        hooks.register(HookEvent.AFTER_TOOL, "audit", lambda hook_input: {"seen": hook_input.tool_name})
        outcome = await hooks.fire_after_tool_event("t", {}, "ok")
        self.assertFalse(outcome.blocked)
        self.assertEqual(outcome.errors, ["broken: hook crashed"])
        self.assertEqual(outcome.outputs, [{"seen": "t"}])
        self.assertEqual(hooks.handlers(HookEvent.AFTER_TOOL), ["broken", "audit"])

    async def test_matcher_limits_hook(self) -> None:
        hooks = HookSystem()
        hooks.register(HookEvent.BEFORE_TOOL, "deny", lambda _i: {"decision": "block"}, matcher="shell")
        self.assertFalse((await hooks.fire_before_tool_event("read_file", {})).blocked)
        outcome = await hooks.fire_before_tool_event("shell", {})
        self.assertTrue(outcome.blocked)
        self.assertEqual(outcome.reason, "Blocked by hook deny")


class TestInterceptor(unittest.IsolatedAsyncioTestCase):
    async def test_before_and_after_share_call_id(self) -> None:
        hooks = HookSystem()
        rec = Recorder()
        install_tool_call_interceptor(hooks, rec.callbacks())
        await hooks.fire_before_tool_event("read_file", {"path": "a.txt"})
        await hooks.fire_after_tool_event("read_file", {"path": "a.txt"}, {"output": "hello"})
        self.assertEqual(len(rec.before), 1)
        self.assertEqual(len(rec.after), 1)
        self.assertEqual(rec.before[0][2], rec.after[0][3])
        self.assertTrue(rec.after[0][4])

    async def test_after_without_before_gets_fresh_id(self) -> None:
        hooks = HookSystem()
        rec = Recorder()
        install_tool_call_interceptor(hooks, rec.callbacks())
        await hooks.fire_after_tool_event("write_file", {"path": "b"}, {"error": "denied"})
        self.assertEqual(len(rec.after), 1)
        self.assertRegex(rec.after[0][3], r"^write_file-\d+-\d+$")
        self.assertFalse(rec.after[0][4])

    async def test_distinct_inputs_keep_their_own_ids(self) -> None:
        hooks = HookSystem()
        rec = Recorder()
        install_tool_call_interceptor(hooks, rec.callbacks())
        await hooks.fire_before_tool_event("read_file", {"path": "a"})
        await hooks.fire_before_tool_event("read_file", {"path": "b"})
        await hooks.fire_after_tool_event("read_file", {"path": "b"}, "B")
        await hooks.fire_after_tool_event("read_file", {"path": "a"}, "A")
        ids = {args["path"]: call_id for _, args, call_id in rec.before}
        self.assertEqual(rec.after[0][3], ids["b"])
        self.assertEqual(rec.after[1][3], ids["a"])

    async def test_original_results_pass_through(self) -> None:
        hooks = HookSystem()
        hooks.register(
            HookEvent.BEFORE_TOOL,
            "deny-shell",
            lambda hook_input: {"decision": "block", "reason": "no shell"},
            matcher="shell",
        )
        install_tool_call_interceptor(hooks, Recorder().callbacks())
        outcome = await hooks.fire_before_tool_event("shell", {"cmd": "ls"})
        self.assertTrue(outcome.blocked)
        self.assertEqual(outcome.reason, "no shell")

    async def test_throwing_callback_does_not_break_tool(self) -> None:
        hooks = HookSystem()

        def explode(*_args: object) -> None:
            raise RuntimeError("observer down")

        install_tool_call_interceptor(hooks, ToolLifecycleCallbacks(on_before_tool=explode, on_after_tool=explode))
        with self.assertLogs("coderagent.hooks.interceptor", level="WARNING") as logs:
            before = await hooks.fire_before_tool_event("t", {})
            after = await hooks.fire_after_tool_event("t", {}, "ok")
        self.assertFalse(before.blocked)
        self.assertFalse(after.blocked)
        self.assertTrue(any("observer down" in line for line in logs.output))

    async def test_rejected_async_callback_is_logged(self) -> None:
        hooks = HookSystem()

        async def reject(*_args: object) -> None:
            raise ValueError("async observer down")

        interceptor = install_tool_call_interceptor(hooks, ToolLifecycleCallbacks(on_before_tool=reject))
        with self.assertLogs("coderagent.hooks.interceptor", level="WARNING") as logs:
            await hooks.fire_before_tool_event("t", {})
            await interceptor.drain()
        self.assertTrue(any("async observer down" in line for line in logs.output))

    async def test_slow_callback_does_not_delay_tool(self) -> None:
        hooks = HookSystem()
        release = asyncio.Event()
        seen: list[str] = []

        async def slow(name: str, _args: object, call_id: str) -> None:
            await release.wait()
            seen.append(call_id)

        interceptor = install_tool_call_interceptor(hooks, ToolLifecycleCallbacks(on_before_tool=slow))
        await asyncio.wait_for(hooks.fire_before_tool_event("t", {}), timeout=1.0)
        self.assertEqual(seen, [])
        release.set()
        await interceptor.drain()
        self.assertEqual(len(seen), 1)

    async def test_missing_callbacks_are_skipped(self) -> None:
        hooks = HookSystem()
        install_tool_call_interceptor(hooks, ToolLifecycleCallbacks())
        outcome = await hooks.fire_after_tool_event("t", {}, "ok")
        self.assertFalse(outcome.blocked)

    async def test_no_hook_system_is_noop(self) -> None:
        with self.assertLogs("coderagent.hooks.interceptor", level="WARNING"):
            result = install_tool_call_interceptor(None, Recorder().callbacks())
        self.assertIsNone(result)

    async def test_uninstall_restores_original_methods(self) -> None:
        hooks = AsyncMock()
        hooks.fire_before_tool_event = AsyncMock(return_value="before")
        hooks.fire_after_tool_event = AsyncMock(return_value="after")
        rec = Recorder()
        interceptor = ToolCallInterceptor(hooks, rec.callbacks())
        interceptor.install()
        self.assertEqual(await hooks.fire_before_tool_event("t", {"x": 1}), "before")
        interceptor.uninstall()
        self.assertEqual(await hooks.fire_after_tool_event("t", {"x": 1}, "r"), "after")
        self.assertEqual(len(rec.before), 1)
        self.assertEqual(rec.after, [])


if __name__ == "__main__":
    unittest.main()
