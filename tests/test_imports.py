"""Test that all modules can be imported without errors.

This test verifies the module structure is correct and there are no import-time errors.
It's critical for catching refactoring issues and should run in pre-commit hooks.
"""

import importlib
from pathlib import Path

import pytest


def get_all_modules(package_name: str = "src") -> list[str]:
    """Recursively discover all Python modules in the package."""
    package_path = Path(__file__).parent.parent / package_name
    modules = []

    for path in package_path.rglob("*.py"):
        if "__pycache__" in path.parts or path.name.startswith("_"):
            continue
        rel_path = path.relative_to(package_path.parent).with_suffix("")
        modules.append(".".join(rel_path.parts))

    return sorted(modules)


class TestImports:
    """Test all modules can be imported."""

    @pytest.mark.parametrize("module_name", get_all_modules())
    def test_module_imports(self, module_name: str):
        """Test that each module can be imported without errors."""
        try:
            importlib.import_module(module_name)
        except ImportError as e:
            pytest.fail(f"Failed to import {module_name}: {e}")

    def test_all_core_modules_import(self):
        """Test critical core modules import successfully."""
        core_modules = [
            "src.config.settings",
            "src.core.context",
            "src.core.exceptions",
            "src.protocol.messages",
            "src.server.dispatcher",
            "src.server.middleware",
            "src.server.authorization",
            "src.auth.jwt_verifier",
            "src.auth.introspection",
            "src.auth.proxy",
            "src.transports.http",
            "src.transports.stdio",
            "src.main",
        ]

        for module in core_modules:
            try:
                importlib.import_module(module)
            except ImportError as e:
                pytest.fail(f"Critical module {module} failed to import: {e}")

    def test_form_parsing_dependency_declared(self):
        """Starlette form parsing for the OAuth endpoints needs python-multipart."""
        import tomllib

        pyproject = Path(__file__).parent.parent / "pyproject.toml"
        dependencies = tomllib.loads(pyproject.read_text())["project"]["dependencies"]

        assert any(dep.startswith("python-multipart") for dep in dependencies)

    def test_no_circular_imports(self):
        """Test that importing main module doesn't cause circular imports."""
        try:
            import src.main

            assert src.main is not None
        except ImportError as e:
            pytest.fail(f"Circular import or missing dependency detected: {e}")


if __name__ == "__main__":
    # Allow running directly for quick testing
    pytest.main([__file__, "-v"])
