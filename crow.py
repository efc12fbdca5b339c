import sys

from crow_bot.app import main


if __name__ == "__main__":
    try:
        main()
    except ValueError as exc:
        print(f"Crow config error: {exc}", file=sys.stderr)
        print("Fill DISCORD_TOKEN (and GEMINI_API_KEY) in .env or crow.env.", file=sys.stderr)
        raise SystemExit(2)
