import argparse
import asyncio
import logging

from playwright.async_api import async_playwright

from webui_agent import (
    AgentSettings,
    ModelConfig,
    OpenAIModelService,
    PlaywrightDriver,
    RunHistory,
    WebUIAgent,
    setup_logging,
)

logger = logging.getLogger("webui_agent.main")


async def run_agent(instruction: str, start_url: str, max_steps: int = 20, history_file: str = "AgentHistory.json") -> RunHistory:
    """
    主循环：感知 -> 决策 -> 执行。
    """
    config = ModelConfig.from_env()
    settings = AgentSettings.from_env()
    client = config.create_client()
    model = OpenAIModelService(client, config.model)
    planner_model = OpenAIModelService(client, config.planner_model) if config.planner_model else None

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=False)
        context = await browser.new_context()
        driver = PlaywrightDriver(context, await context.new_page())

        agent = WebUIAgent(
            instruction,
            model,
            driver,
            settings=settings,
            planner_model=planner_model,
            initial_actions=[{"go_to_url": {"url": start_url}}],
        )
        history = await agent.run(max_steps=max_steps)
        agent.save_history(history_file)

        await browser.close()

    logger.info(f"✓ Agent 执行完成（共 {history.number_of_steps()} 步）")
    if history.final_result():
        logger.info(f"最终结果：{history.final_result()}")
    return history


async def replay_agent(history_file: str, start_url: str) -> None:
    """按保存的历史在新的浏览器中重放一遍"""
    config = ModelConfig.from_env()
    model = OpenAIModelService(config.create_client(), config.model)

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=False)
        context = await browser.new_context()
        driver = PlaywrightDriver(context, await context.new_page())

        agent = WebUIAgent(
            "replay",
            model,
            driver,
            initial_actions=[{"go_to_url": {"url": start_url}}],
        )
        results = await agent.load_and_rerun(history_file)
        for r in results:
            if r.error:
                logger.warning(f"⚠ {r.error}")

        await browser.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Web UI 自动化智能体")
    parser.add_argument("instruction", nargs="?", default="在页面上搜索今天天气怎么样并提交")
    parser.add_argument("--url", default="https://www.baidu.com")
    parser.add_argument("--max-steps", type=int, default=20)
    parser.add_argument("--history", default="AgentHistory.json")
    parser.add_argument("--replay", action="store_true", help="回放 --history 指定的历史记录")
    args = parser.parse_args()

    setup_logging()
    if args.replay:
        asyncio.run(replay_agent(args.history, args.url))
    else:
        asyncio.run(run_agent(args.instruction, args.url, args.max_steps, args.history))
