#!/usr/bin/env python3
"""
Echo Bot — Offline demo of flows and commands on the console.

Usage:
    python scripts/echo_bot.py
    python scripts/echo_bot.py --config config/settings.yaml --log-level DEBUG

Try:
    > ping
    > echo hello there
    > signup          (then answer the questions)
"""
import asyncio
import os
import sys
import argparse
from dataclasses import dataclass

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv


@dataclass
class SignupContext:
    name: str = ""
    email: str = ""


def build_bot(settings):
    from core.bot import Bot
    from flows import DirectMessageFilter, new_flow, new_state

    async def ask_name(bot, message, ctx: SignupContext) -> bool:
        await bot.message(message.channel, "What's your name?")
        return True

    async def ask_email(bot, message, ctx: SignupContext) -> bool:
        ctx.name = message.text.strip()
        if not ctx.name:
            await bot.message(message.channel, "Please tell me your name.")
            return False
        await bot.message(message.channel, f"Thanks {ctx.name}. Your email?")
        return True

    async def confirm(bot, message, ctx: SignupContext) -> bool:
        if "@" not in message.text:
            await bot.message(message.channel, "That doesn't look like an email, try again.")
            return False
        ctx.email = message.text.strip()
        await bot.message(message.channel, f"Signed up {ctx.name} <{ctx.email}>.")
        return True

    signup = (
        new_flow("signup", context_factory=SignupContext)
        .add_states(
            new_state("greet", ask_name).to("name"),
            new_state("name", ask_email).to("email"),
            new_state("email", confirm),
        )
        .set_trigger(lambda bot, msg: msg.text.strip().lower() == "signup")
        .filter_by(DirectMessageFilter())
        .build("greet")
    )

    async def pong(bot, message, *groups):
        await bot.message(message.channel, "pong")

    async def echo(bot, message, *groups):
        await bot.message(message.channel, groups[1])

    async def shrug(bot, message):
        await bot.message(message.channel, "I don't know that one. Try `ping`, `echo <text>` or `signup`.")

    bot = Bot(settings)
    bot.register_flow(signup)
    bot.respond_to(r"^ping$", pong)
    bot.respond_to(r"^echo (.+)$", echo)
    bot.default_response(shrug)
    return bot


def main():
    parser = argparse.ArgumentParser(description="Offline echo bot")
    parser.add_argument("--config", default=None, help="Path to settings YAML")
    parser.add_argument("--log-level", default=None, help="Override log level")
    args = parser.parse_args()

    load_dotenv()

    from config.settings import load_settings
    from utils.logging import setup_logging

    settings = load_settings(args.config)
    settings.offline = True
    setup_logging(args.log_level or settings.logging.level, settings.logging.format)

    asyncio.run(build_bot(settings).start())


if __name__ == "__main__":
    main()
