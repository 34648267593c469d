import pytest
from conftest import FakeDriver, make_state

from webui_agent.actions import parse_action
from webui_agent.controller import MAX_WAIT_SECONDS, Controller
from webui_agent.exceptions import BrowserError


@pytest.fixture
def selector_map():
    return make_state().selector_map


async def test_click(driver, selector_map):
    result = await Controller(driver).act(parse_action({"click_element": {"index": 1}}), selector_map)

    assert result.error is None
    assert result.include_in_memory
    assert "[1]" in result.extracted_content
    assert driver.performed == [("handle-1", "click", {})]


async def test_click_unknown_index(driver, selector_map):
    result = await Controller(driver).act(parse_action({"click_element": {"index": 9}}), selector_map)

    assert "does not exist" in result.error
    assert driver.performed == []


async def test_click_unresolvable_handle(driver, selector_map):
    driver.unresolvable = True

    result = await Controller(driver).act(parse_action({"click_element": {"index": 0}}), selector_map)

    assert "could not be located" in result.error


async def test_input_text_fills_secret(driver, selector_map):
    controller = Controller(driver, sensitive_data={"password": "hunter2"})

    result = await controller.act(
        parse_action({"input_text": {"index": 0, "text": "[REDACTED:password]"}}), selector_map
    )

    assert driver.performed == [("handle-0", "fill", {"text": "hunter2"})]
    assert "hunter2" not in result.extracted_content


async def test_done(driver, selector_map):
    result = await Controller(driver).act(parse_action({"done": {"text": "答案是 42", "success": True}}), selector_map)

    assert result.is_done
    assert result.success is True
    assert result.extracted_content == "答案是 42"


async def test_navigation_actions(driver, selector_map):
    controller = Controller(driver)
    for data in (
        {"go_to_url": {"url": "https://example.com/next"}},
        {"go_back": {}},
        {"send_keys": {"keys": "Enter"}},
        {"scroll": {"direction": "up", "amount": 300}},
        {"open_tab": {"url": "https://example.com/tab"}},
        {"switch_tab": {"page_id": 0}},
        {"wait": {"seconds": 0}},
    ):
        result = await controller.act(parse_action(data), selector_map)
        assert result.error is None

    assert [kind for _, kind, _ in driver.performed] == [
        "navigate",
        "go_back",
        "press",
        "scroll",
        "open_tab",
        "switch_tab",
    ]
    assert driver.performed[3][2] == {"direction": "up", "amount": 300}


async def test_disallowed_domain(driver, selector_map):
    controller = Controller(driver, allowed_domains=["example.com"])

    result = await controller.act(parse_action({"go_to_url": {"url": "https://evil.test/"}}), selector_map)

    assert "non-allowed" in result.error
    assert driver.performed == []


@pytest.mark.parametrize(
    "url, allowed",
    [
        ("https://example.com/a", True),
        ("https://docs.example.com/a", True),
        ("https://example.org/", False),
        ("https://api.test.io/", True),
        ("https://test.io/", True),
        ("about:blank", True),
        ("not a url", False),
    ],
)
def test_is_url_allowed(url, allowed):
    controller = Controller(FakeDriver(), allowed_domains=["example.com", "*.test.io"])

    assert controller.is_url_allowed(url) is allowed


async def test_browser_error_becomes_result(driver, selector_map):
    driver.action_error = BrowserError("click 超时")

    result = await Controller(driver).act(parse_action({"click_element": {"index": 0}}), selector_map)

    assert result.error == "click 超时"
    assert result.include_in_memory


async def test_wait_is_capped(driver, selector_map, monkeypatch):
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    monkeypatch.setattr("webui_agent.controller.asyncio.sleep", fake_sleep)

    result = await Controller(driver).act(parse_action({"wait": {"seconds": 3600}}), selector_map)

    assert slept == [MAX_WAIT_SECONDS]
    assert str(MAX_WAIT_SECONDS) in result.extracted_content
