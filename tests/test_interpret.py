import json

import pytest

from snapsolve.interpret import (
    DEFAULT_TITLE,
    EMPTY_RESPONSE_DESCRIPTION,
    PROBLEM_STRATEGIES,
    extract_complexity,
    extract_list,
    interpret_problem,
    interpret_solution,
    parse_heuristic,
    parse_json,
    strip_reflective_sections,
)


def test_json_strategy_wins_when_object_parses():
    payload = {
        "title": "Two Sum",
        "description": "Find two numbers adding up to target.",
        "code": "def two_sum(nums, target): ...",
        "examples": [{"input": "[2,7], 9", "output": "[0,1]"}],
        "constraints": ["2 <= len(nums)"],
        "function_signature": "def two_sum(nums, target)",
    }
    text = "Here you go:\n" + json.dumps(payload) + "\nGood luck"

    problem = interpret_problem(text)

    assert problem.title == "Two Sum"
    assert problem.code.startswith("def two_sum")
    assert problem.examples[0].output == "[0,1]"
    assert problem.constraints == ["2 <= len(nums)"]
    assert problem.function_signature == "def two_sum(nums, target)"
    assert problem.original_problem == text


def test_json_without_problem_keys_is_not_a_problem():
    assert parse_json("func foo() {}") is None
    assert parse_json('{"unrelated": 1}') is None


def test_malformed_json_falls_through_to_heuristic():
    text = 'Problem: Broken\n{"title": "x", oops}\n```python\nprint(1)\n```'

    problem = interpret_problem(text)

    assert problem.title == "Broken"
    assert problem.code == "print(1)"


def test_heuristic_reads_labels_fences_and_examples():
    text = (
        "Title: Reverse a list\n"
        "Description: Return the list reversed.\n"
        "Example 1:\nInput: [1,2]\nOutput: [2,1]\nExplanation: reversed\n\n"
        "Constraints:\n- length <= 100\n- values are ints\n\n"
        "```python\ndef rev(xs):\n    return xs[::-1]\n```\n"
        "```python\nprint(rev([1]))\n```"
    )

    problem = parse_heuristic(text)

    assert problem.title == "Reverse a list"
    assert problem.description == "Return the list reversed."
    assert problem.code == "def rev(xs):\n    return xs[::-1]\n\nprint(rev([1]))"
    assert len(problem.examples) == 1
    assert problem.examples[0].input == "[1,2]"
    assert problem.examples[0].output == "[2,1]"
    assert problem.constraints == ["length <= 100", "values are ints"]


def test_unfenced_code_is_detected():
    problem = interpret_problem("func foo(n): return n*2")

    assert "func foo" in problem.code
    assert problem.description


@pytest.mark.parametrize(
    "text",
    [
        "Just some prose about a bug without any structure at all.",
        "short",
        "   \n  ",
        "",
    ],
)
def test_interpret_never_raises_and_keeps_description(text):
    problem = interpret_problem(text)

    assert problem is not None
    assert problem.description
    assert problem.title


def test_blank_text_uses_placeholder_description():
    problem = interpret_problem("   ")

    assert problem.title == DEFAULT_TITLE
    assert problem.description == EMPTY_RESPONSE_DESCRIPTION


def test_crashing_strategy_is_skipped():
    def _boom(text):
        raise RuntimeError("bug")

    problem = interpret_problem("Problem: Survives\nbody", [("boom", _boom)] + list(PROBLEM_STRATEGIES))

    assert problem.title == "Survives"


def test_extract_list_inline_array():
    assert extract_list('"constraints": ["a", "b"]', "constraints") == ["a", "b"]


def test_extract_list_label_with_trailing_text():
    text = "Count the pairs.\nConstraints: 1 <= n <= 10\n- values are distinct\n\nExample 1:"

    assert extract_list(text, "constraints") == ["1 <= n <= 10", "values are distinct"]


def test_extract_list_label_with_markdown_emphasis():
    text = "**Constraints:**\n* 1 <= n <= 10\n* n is even\n"

    assert extract_list(text, "constraints") == ["1 <= n <= 10", "n is even"]


def test_extract_list_ignores_label_word_in_prose():
    text = "Constraints are tight here.\n- not a list\n"

    assert extract_list(text, "constraints") == []


def test_solution_takes_fenced_block_and_defaults_complexity():
    text = (
        "We walk the list once.\n\n"
        "```go\nfunc double(n int) int {\n    return n * 2\n}\n```\n"
        "Time complexity: O(1)\n"
    )

    solution = interpret_solution(text)

    assert solution.code.startswith("func double")
    assert solution.language == "go"
    assert solution.time_complexity == "O(1)"
    assert solution.space_complexity == "O(n)"
    assert solution.thoughts == ["We walk the list once."]


def test_solution_complexity_with_nested_parentheses():
    assert extract_complexity("Space Complexity: O(n log(n)) overall", "space") == "O(n log(n))"


def test_solution_without_code_keeps_text():
    solution = interpret_solution("No code needed, the answer is forty two.")

    assert solution.code == "No code needed, the answer is forty two."
    assert solution.time_complexity == "O(n)"


def test_reflective_sections_are_removed():
    text = "My Thoughts: rambling here\n\n```python\nx = 1\n```"

    cleaned = strip_reflective_sections(text)

    assert "rambling" not in cleaned
    assert "x = 1" in cleaned
