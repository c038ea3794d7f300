"""Allow ``python -m m223s2mqtt``."""

from m223s2mqtt._cli import main

main()
