"""
Import-boundary and transaction-ownership enforcement.

1. Kernel isolation    -- inventory_kernel/** may not import engines,
                          services or config.
2. Engine purity       -- inventory_engines/** may not import the ORM,
                          models, selectors, kernel services, services or
                          config.
3. Config isolation    -- inventory_config/** may not import engines or
                          services.
4. Injected time       -- no wall-clock reads outside the Clock module.
5. Commit ownership    -- services never commit; the facade or
                          session_scope() does.

All scanning is done via AST; these tests are read-only.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _relative(path: Path) -> str:
    return path.relative_to(ROOT).as_posix()


def _tree(path: Path) -> ast.AST:
    return ast.parse(path.read_text(), filename=str(path))


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    """Return (line_number, module_string) for every import in *path*."""
    results: list[tuple[int, str]] = []
    for node in ast.walk(_tree(path)):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _import_violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    return [
        f"  {_relative(path)}:{lineno} imports '{module}'"
        for path in _python_files(package)
        for lineno, module in _extract_imports(path)
        if _matches_any(module, forbidden)
    ]


class TestKernelIsolation:

    def test_kernel_imports_nothing_above_it(self):
        violations = _import_violations(
            "inventory_kernel",
            ("inventory_engines", "inventory_services", "inventory_config"),
        )
        assert not violations, (
            "inventory_kernel/** must not import engines, services or config:\n"
            + "\n".join(violations)
        )


class TestEnginePurity:

    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "inventory_kernel.models",
        "inventory_kernel.selectors",
        "inventory_kernel.services",
        "inventory_kernel.db.engine",
        "inventory_services",
        "inventory_config",
    )

    def test_engine_files_have_no_forbidden_imports(self):
        violations = _import_violations("inventory_engines", self.FORBIDDEN_PREFIXES)
        assert not violations, (
            "inventory_engines/** must stay free of the ORM, persistence "
            "and the layers above it:\n" + "\n".join(violations)
        )


class TestConfigIsolation:

    def test_config_does_not_import_engines_or_services(self):
        violations = _import_violations(
            "inventory_config", ("inventory_engines", "inventory_services")
        )
        assert not violations, "\n".join(violations)


class TestInjectedTime:
    """Wall-clock reads belong to inventory_kernel/domain/clock.py only.

    time.monotonic stays allowed for duration measurements.
    """

    FORBIDDEN_CALLS = frozenset({
        "datetime.now",
        "datetime.utcnow",
        "date.today",
        "time.time",
    })
    ALLOWED_FILES = frozenset({"inventory_kernel/domain/clock.py"})

    def test_no_wall_clock_reads(self):
        violations: list[str] = []
        for package in ("inventory_kernel", "inventory_engines", "inventory_services", "inventory_config"):
            for path in _python_files(package):
                if _relative(path) in self.ALLOWED_FILES:
                    continue
                for node in ast.walk(_tree(path)):
                    if not (isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name)):
                        continue
                    qualname = f"{node.value.id}.{node.attr}"
                    if qualname in self.FORBIDDEN_CALLS:
                        violations.append(f"  {_relative(path)}:{node.lineno} calls '{qualname}'")

        assert not violations, (
            "Use the injected Clock instead of reading the wall clock:\n"
            + "\n".join(violations)
        )


class TestCommitOwnership:

    ALLOWED_FILES = frozenset({"inventory_services/facade.py"})

    def test_only_the_facade_commits(self):
        violations: list[str] = []
        for package in ("inventory_kernel", "inventory_engines", "inventory_services"):
            for path in _python_files(package):
                if _relative(path) in self.ALLOWED_FILES:
                    continue
                for node in ast.walk(_tree(path)):
                    if (
                        isinstance(node, ast.Attribute)
                        and node.attr == "commit"
                        and isinstance(node.value, ast.Attribute)
                        and node.value.attr in ("_session", "session")
                    ):
                        violations.append(f"  {_relative(path)}:{node.lineno}")

        assert not violations, (
            "Services flush; the facade owns commit:\n" + "\n".join(violations)
        )
