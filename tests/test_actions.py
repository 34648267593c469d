import pytest
from conftest import actions_response, done_response

from webui_agent.actions import (
    AgentOutput,
    ClickElementAction,
    GoBackAction,
    ScrollAction,
    describe_actions,
    parse_action,
)
from webui_agent.exceptions import ModelOutputError


def test_parse_action():
    action = parse_action({"input_text": {"index": 3, "text": "hello"}})

    assert action.name == "input_text"
    assert action.get_index() == 3
    assert action.to_dict() == {"input_text": {"index": 3, "text": "hello"}}


def test_parse_action_defaults():
    action = parse_action({"scroll": {}})

    assert isinstance(action, ScrollAction)
    assert action.direction == "down"
    assert action.amount is None


@pytest.mark.parametrize(
    "data",
    [
        {"fly": {}},
        {"click_element": {"index": 1}, "go_back": {}},
        {"click_element": {"index": -1}},
        {"input_text": {"index": 1}},
        "click_element",
    ],
)
def test_parse_action_rejects_invalid(data):
    with pytest.raises(ModelOutputError):
        parse_action(data)


def test_allowed_actions_restrict_vocabulary():
    with pytest.raises(ModelOutputError):
        parse_action({"go_back": {}}, allowed=["done"])
    assert parse_action({"done": {"text": "x", "success": False}}, allowed=["done"]).name == "done"


def test_set_index():
    click = ClickElementAction(index=1)
    click.set_index(4)
    back = GoBackAction()
    back.set_index(4)

    assert click.index == 4
    assert back.get_index() is None
    assert "index" not in back.model_dump()


def test_agent_output_parse():
    output = AgentOutput.parse(done_response("答案", success=False))

    assert output.current_state.next_goal == "finish"
    assert output.action[0].name == "done"
    assert output.action[0].success is False
    assert output.to_dict()["action"] == [{"done": {"text": "答案", "success": False}}]


@pytest.mark.parametrize(
    "data",
    [
        [],
        {"current_state": {}},
        {"current_state": {}, "action": []},
        {"current_state": {}, "action": "click_element"},
    ],
)
def test_agent_output_rejects_invalid(data):
    with pytest.raises(ModelOutputError):
        AgentOutput.parse(data)


def test_agent_output_missing_brain_uses_defaults():
    output = AgentOutput.parse({"action": [{"go_back": {}}]})

    assert output.current_state.memory == ""


def test_describe_actions():
    text = describe_actions()

    assert "click_element" in text
    assert "done" in text
    assert describe_actions(["done"]).count("\n") == 0


def test_actions_response_helper_is_valid():
    assert len(AgentOutput.parse(actions_response({"go_back": {}}, {"wait": {"seconds": 1}})).action) == 2
