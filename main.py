"""
入口转发

本项目以包与 CLI 的形式提供：
  - 包名: rssi_ranger
  - CLI: rssi-ranger

此文件仅用于兼容 `python main.py` 的运行方式，会转发到 `rssi_ranger.cli:main`。
日志由 CLI 根据配置文件中的 logging.level 统一设置。
"""

import sys

from rssi_ranger.cli import main as _cli_main


def main():
    return _cli_main()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
