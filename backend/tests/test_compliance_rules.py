import ast
import re
from pathlib import Path

TESTS_ROOT = Path(__file__).resolve().parent
HELPERS_DIR = TESTS_ROOT / "helpers"

DB_SESSION_METHODS = {
    "add",
    "add_all",
    "commit",
    "delete",
    "execute",
    "flush",
    "get",
    "query",
    "refresh",
    "rollback",
    "scalar",
    "scalars",
}

# Tests reach the database only through the migrated test engine fixtures.
PRODUCTION_SESSION_NAMES = {"SessionLocal", "engine"}
PRODUCTION_SESSION_MODULE = "daycare.infrastructure.db.session"

DOCSTRING_STEP = re.compile(r"^\s*([1-4])\.\s+\S")


def _test_modules() -> list[Path]:
    return sorted(path for path in TESTS_ROOT.rglob("test_*.py") if HELPERS_DIR not in path.parents)


def _test_functions(file_path: Path) -> list[ast.FunctionDef]:
    tree = ast.parse(file_path.read_text(encoding="utf-8"))
    return [node for node in tree.body if isinstance(node, ast.FunctionDef) and node.name.startswith("test_")]


def _relative(file_path: Path) -> Path:
    return file_path.relative_to(TESTS_ROOT)


def _db_session_calls(function: ast.FunctionDef) -> list[int]:
    lines = []
    for node in ast.walk(function):
        if not isinstance(node, ast.Call):
            continue
        func = node.func
        if (
            isinstance(func, ast.Attribute)
            and isinstance(func.value, ast.Name)
            and func.value.id == "db_session"
            and func.attr in DB_SESSION_METHODS
        ):
            lines.append(node.lineno)
    return lines


def test_no_direct_db_session_calls_inside_test_functions():
    """
    Validate test functions seed and read data only through tests/helpers.

    1. Discover every test module outside tests/helpers.
    2. Parse each module and inspect only top-level test_* functions.
    3. Detect direct db_session calls such as add, commit or execute.
    4. Validate no violations exist and report their locations otherwise.
    """
    errors = [
        f"{_relative(file_path)}:{line} in {function.name}"
        for file_path in _test_modules()
        for function in _test_functions(file_path)
        for line in _db_session_calls(function)
    ]
    assert not errors, "Direct db_session calls found in test functions:\n" + "\n".join(errors)


def test_every_test_documents_four_numbered_steps():
    """
    Validate every test function carries the four-step docstring.

    1. Discover every test module outside tests/helpers.
    2. Read the docstring of each top-level test_* function.
    3. Collect the numbered step lines 1 through 4.
    4. Validate each test lists all four steps.
    """
    errors = []
    for file_path in _test_modules():
        for function in _test_functions(file_path):
            docstring = ast.get_docstring(function) or ""
            steps = {match.group(1) for line in docstring.splitlines() if (match := DOCSTRING_STEP.match(line))}
            if steps != {"1", "2", "3", "4"}:
                errors.append(f"{_relative(file_path)}:{function.lineno} {function.name}")
    assert not errors, "Tests without a four-step docstring:\n" + "\n".join(errors)


def test_tests_never_import_the_production_session():
    """
    Validate tests and helpers avoid the application engine and SessionLocal.

    1. Discover every test module and every tests/helpers module.
    2. Parse the import statements of each module.
    3. Detect imports of SessionLocal or engine from the db session module.
    4. Validate no module imports them directly.
    """
    modules = _test_modules() + sorted(HELPERS_DIR.glob("*.py")) + [TESTS_ROOT / "conftest.py"]
    errors = []
    for file_path in modules:
        tree = ast.parse(file_path.read_text(encoding="utf-8"))
        for node in ast.walk(tree):
            if not isinstance(node, ast.ImportFrom) or node.module != PRODUCTION_SESSION_MODULE:
                continue
            imported = {alias.name for alias in node.names} & PRODUCTION_SESSION_NAMES
            if imported:
                errors.append(f"{_relative(file_path)}:{node.lineno} imports {', '.join(sorted(imported))}")
    assert not errors, "Tests importing the production session:\n" + "\n".join(errors)
