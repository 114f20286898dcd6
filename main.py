from rich.pretty import pprint

from skein import *


def start(arguments):
    pprint(arguments)


parser = (
    Parser("demo")
    .option("verbose", alias="v", type="count", describe="Increase output")
    .option("port", alias="p", type="number", default=8080, describe="Port to bind")
    .command("serve", "Manage the service")
    .command("serve start <name>", "Start a named service", handler=start)
    .example("$0 serve start web -vv", "start 'web' with debug output")
    .env("DEMO")
    .strict()
)


if __name__ == '__main__':
    parser.parse()
