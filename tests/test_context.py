from __future__ import annotations

import unittest

from adaptation.resolution.context import Context, as_context, breakpoint_for


class ContextTests(unittest.TestCase):
    def test_context_is_read_only(self) -> None:
        ctx = Context({"purpose": "view"})
        with self.assertRaises(TypeError):
            ctx["purpose"] = "edit"  # type: ignore[index]
        with self.assertRaises(TypeError):
            ctx.purpose = "edit"  # type: ignore[attr-defined]
        self.assertEqual(ctx["purpose"], "view")

    def test_extend_copies_and_overrides(self) -> None:
        base = Context({"purpose": "view", "theme": "dark"})
        child = base.extend(theme="light", intent="browse")
        self.assertEqual(base["theme"], "dark")
        self.assertNotIn("intent", base)
        self.assertEqual(child["theme"], "light")
        self.assertEqual(child["intent"], "browse")
        self.assertEqual(child["purpose"], "view")

    def test_preserves_insertion_order(self) -> None:
        ctx = Context({"b": 1, "a": 2}, c=3)
        self.assertEqual(list(ctx), ["b", "a", "c"])

    def test_area_is_derived_and_follows_extend(self) -> None:
        ctx = Context(container_width=100, container_height=50)
        self.assertEqual(ctx["container_area"], 5000)
        wider = ctx.extend(container_width=200)
        self.assertEqual(wider["container_area"], 10000)
        explicit = Context(container_width=100, container_height=50, container_area=1)
        self.assertEqual(explicit["container_area"], 1)

    def test_breakpoint_table(self) -> None:
        self.assertEqual(breakpoint_for(0), "xs")
        self.assertEqual(breakpoint_for(575), "xs")
        self.assertEqual(breakpoint_for(576), "sm")
        self.assertEqual(breakpoint_for(991), "md")
        self.assertEqual(breakpoint_for(992), "lg")
        self.assertEqual(breakpoint_for(1200), "xl")
        self.assertEqual(breakpoint_for(5000), "xxl")
        self.assertIsNone(breakpoint_for(None))
        self.assertIsNone(breakpoint_for("wide"))
        self.assertIsNone(breakpoint_for(True))
        self.assertEqual(Context(container_width=800).breakpoint, "md")
        self.assertIsNone(Context().breakpoint)

    def test_permissions_normalized_and_superuser(self) -> None:
        ctx = Context(user_permissions=["grid.edit", "grid.view"], user_role="editor")
        self.assertIsInstance(ctx["user_permissions"], frozenset)
        self.assertTrue(ctx.has_permission("grid.edit"))
        self.assertFalse(ctx.has_permission("grid.delete"))
        admin = Context(user_role="super_admin")
        self.assertTrue(admin.has_permission("anything"))
        custom = Context(user_role="root", superuser_roles={"root"})
        self.assertTrue(custom.has_permission("anything"))
        self.assertTrue(custom.extend(theme="dark").has_permission("anything"))

    def test_validate_reports_missing(self) -> None:
        ctx = Context(purpose="view", intent=None)
        ok, missing = ctx.validate(["purpose", "intent", "entity_type"])
        self.assertFalse(ok)
        self.assertEqual(missing, ["intent", "entity_type"])
        self.assertEqual(ctx.validate(["purpose"]), (True, []))

    def test_as_context_passthrough_and_to_dict(self) -> None:
        ctx = Context(purpose="view")
        self.assertIs(as_context(ctx), ctx)
        other = as_context({"tags": ["a", "b"], "user_permissions": ["z", "y"]})
        self.assertEqual(other.to_dict(), {"tags": ["a", "b"], "user_permissions": ["y", "z"]})
        self.assertEqual(as_context(None), Context())

    def test_nested_values_are_frozen(self) -> None:
        source = {"a": 1, "tags": ["x"]}
        ctx = Context(meta=source)
        source["a"] = 2
        self.assertEqual(ctx["meta"]["a"], 1)
        with self.assertRaises(TypeError):
            ctx["meta"]["a"] = 3
        self.assertEqual(ctx["meta"]["tags"], ("x",))
        self.assertEqual(ctx.to_dict(), {"meta": {"a": 1, "tags": ["x"]}})
        self.assertEqual(ctx, {"meta": {"a": 1, "tags": ("x",)}})


if __name__ == "__main__":
    unittest.main()
