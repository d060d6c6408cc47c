from __future__ import annotations

import asyncio

import pytest

from commerceflow.engine.code_executor import CodeExecutor, to_jsonable, wrap_script
from commerceflow.errors import ScriptError, StepTimeout


def _run(executor: CodeExecutor, code: str, **kwargs):
    return asyncio.run(executor.run(code, **kwargs))


def test_wrap_script_indents_body() -> None:
    assert wrap_script("x = 1\nreturn x") == "def run_step(last, input, trigger):\n    x = 1\n    return x\n"
    assert wrap_script("") == "def run_step(last, input, trigger):\n    pass\n"


def test_returns_value_and_captures_console_and_print() -> None:
    code = "\n".join(
        [
            "total = sum(item['price'] for item in last['items'])",
            "print('total is', total)",
            "console.warn('check discount')",
            "return {'total': total, 'customer': input['email']}",
        ]
    )
    result = _run(
        CodeExecutor(),
        code,
        last={"items": [{"price": 5}, {"price": 7}]},
        input={"email": "a@example.com"},
    )
    assert result.value == {"total": 12, "customer": "a@example.com"}
    assert result.logs == ["total is 12", "[warn] check discount"]


def test_builtin_modules_are_available() -> None:
    result = _run(CodeExecutor(), "import math\nreturn math.floor(json.loads('2.7'))")
    assert result.value == 2


def test_script_errors_carry_logs() -> None:
    with pytest.raises(ScriptError) as exc:
        _run(CodeExecutor(), "console.log('before')\nreturn 1 / 0")
    assert "ZeroDivisionError" in str(exc.value)
    assert exc.value.logs == ["before"]


def test_syntax_errors_are_script_errors() -> None:
    with pytest.raises(ScriptError) as exc:
        _run(CodeExecutor(), "return (")
    assert "SyntaxError" in str(exc.value)


def test_timeout_is_distinct_from_script_errors() -> None:
    with pytest.raises(StepTimeout) as exc:
        _run(CodeExecutor(), "while True:\n    pass", timeout_ms=200)
    assert exc.value.timeout_ms == 200


def test_imports_outside_the_allow_list_are_denied() -> None:
    with pytest.raises(ScriptError) as exc:
        _run(CodeExecutor(), "import os\nreturn os.getcwd()")
    assert "not allowed" in str(exc.value)


def test_private_attributes_are_blocked() -> None:
    with pytest.raises(ScriptError):
        _run(CodeExecutor(), "return last.__class__")


def test_modules_reached_through_attributes_are_blocked() -> None:
    with pytest.raises(ScriptError) as exc:
        _run(CodeExecutor(), "return uuid.os.getcwd()")
    assert "not allowed" in str(exc.value)

    with pytest.raises(ScriptError):
        _run(CodeExecutor(), "return uuid.sys.modules")


def test_allowed_submodules_stay_reachable() -> None:
    result = _run(CodeExecutor(), "return collections.abc is not None and json.decoder is not None")
    assert result.value is True


def test_sandbox_setup_is_not_billed_to_the_script() -> None:
    result = _run(CodeExecutor(), "return pydantic.BaseModel is not None", timeout_ms=150)
    assert result.value is True


def test_declared_packages_must_be_allow_listed() -> None:
    with pytest.raises(ScriptError):
        CodeExecutor(allowed_packages=["httpx"]).check_packages(["numpy"])
    assert CodeExecutor(allowed_packages=["httpx"]).check_packages(["httpx", "json"]) == ["httpx", "json"]


def test_allow_listed_package_can_be_imported() -> None:
    result = _run(
        CodeExecutor(allowed_packages=["httpx"]),
        "import httpx\nreturn httpx.codes.OK == 200",
        packages=["httpx"],
    )
    assert result.value is True


def test_to_jsonable_falls_back_to_strings() -> None:
    assert to_jsonable({"when": object}) == {"when": str(object)}
