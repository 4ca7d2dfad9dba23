"""
入口转发

定位功能以包与 CLI 形式提供：
  - 包名: ibeacon_locator
  - CLI: ibeacon-locator

此文件仅用于兼容 `python main.py` 的运行方式，会转发到 `ibeacon_locator.cli:main`。
"""

import sys

from ibeacon_locator.cli import main as _cli_main


def main():
    sys.exit(_cli_main())


if __name__ == "__main__":  # pragma: no cover
    main()
