from conftest import actions_response, buttons_page, done_response, make_state

from webui_agent.actions import AgentOutput
from webui_agent.fingerprint import HistoryElement, fingerprint
from webui_agent.memory import Memory, RunHistory
from webui_agent.models import ActionResult, StepMetadata


def test_find_in_tree_round_trip():
    state = make_state(buttons_page(["A", "B", "C"]))

    for element in state.selector_map.values():
        assert Memory.find_in_tree(fingerprint(element), state.element_tree) is element


def test_find_in_recaptured_tree():
    old = make_state(buttons_page(["A", "B"]))
    new = make_state(buttons_page(["A", "B"]))
    record = HistoryElement.from_element(old.selector_map[1])

    found = Memory.find_in_tree(record, new.element_tree)

    assert found is new.selector_map[1]


def test_find_returns_none_when_element_changed():
    old = make_state(buttons_page(["A"]))
    payload = buttons_page(["A"])
    payload["map"]["b0"]["attributes"]["disabled"] = "true"
    new = make_state(payload)

    assert Memory.find_in_tree(fingerprint(old.selector_map[0]), new.element_tree) is None


def test_record_stores_interacted_elements():
    state = make_state(buttons_page(["A", "B"]))
    output = AgentOutput.parse(
        actions_response(
            {"click_element": {"index": 1}},
            {"click_element": {"index": 7}},
            {"go_back": {}},
        )
    )
    memory = Memory()

    record = memory.record(output, state, [ActionResult(extracted_content="ok")])

    first, missing, no_index = record.state.interacted_element
    assert first.fingerprint == fingerprint(state.selector_map[1])
    assert missing is None
    assert no_index is None
    assert len(memory.history) == 1


def test_record_without_model_output():
    memory = Memory()
    record = memory.record(None, make_state(), [ActionResult(error="boom")])

    assert record.state.interacted_element == [None]
    assert memory.history.errors() == ["boom"]


def _history() -> RunHistory:
    memory = Memory()
    memory.record(
        AgentOutput.parse(actions_response({"click_element": {"index": 0}})),
        make_state(url="https://example.com/a"),
        [ActionResult(extracted_content="clicked", include_in_memory=True)],
        StepMetadata(step_start_time=1.0, step_end_time=3.0, input_tokens=100, step_number=1),
    )
    memory.record(
        AgentOutput.parse(done_response("all done")),
        make_state(url="https://example.com/b"),
        [ActionResult(is_done=True, success=True, extracted_content="all done")],
        StepMetadata(step_start_time=3.0, step_end_time=4.5, input_tokens=150, step_number=2),
    )
    return memory.history


def test_run_history_views():
    history = _history()

    assert history.is_done()
    assert history.is_successful() is True
    assert history.final_result() == "all done"
    assert history.urls() == ["https://example.com/a", "https://example.com/b"]
    assert history.action_names() == ["click_element", "done"]
    assert history.model_actions()[0] == {"click_element": {"index": 0}}
    assert history.extracted_content() == ["clicked", "all done"]
    assert history.total_duration_seconds() == 3.5
    assert history.total_input_tokens() == 250
    assert history.number_of_steps() == 2
    assert not history.has_errors()


def test_unfinished_history():
    history = RunHistory()

    assert not history.is_done()
    assert history.is_successful() is None
    assert history.final_result() is None


def test_save_and_load(tmp_path):
    history = _history()
    path = tmp_path / "runs" / "history.json"

    history.save_to_file(path)
    loaded = RunHistory.load_from_file(path)

    assert len(loaded) == 2
    assert loaded.model_actions() == history.model_actions()
    assert loaded.final_result() == "all done"
    original = history.history[0].state.interacted_element[0]
    restored = loaded.history[0].state.interacted_element[0]
    assert restored.fingerprint == original.fingerprint
    assert loaded.history[1].metadata.input_tokens == 150
