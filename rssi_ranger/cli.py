from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from .config_manager import ConfigManager
from .exceptions import RangerError
from .mqtt_processor import MQTTRangingProcessor
from .path_loss import rssi_to_distance
from .sample_log import SampleLog, readings_frame, save_readings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str | int = logging.INFO) -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


def run_mqtt(args, config: ConfigManager):
    processor = MQTTRangingProcessor(config)

    t = threading.Thread(target=processor.start_mqtt_client, daemon=True)
    t.start()

    # graceful shutdown
    def handle_sigint(sig, frame):
        processor.stop_mqtt_client()
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_sigint)
    signal.signal(signal.SIGTERM, handle_sigint)

    t.join()
    return 0


def run_replay(args, config: ConfigManager):
    pipeline = config.build_pipeline()
    log = SampleLog(config.get_default_frequency()).load(args.input)
    logger.info("回放 %s，共 %d 条读数", args.input, len(log))

    results = []
    for cycle, samples in log.cycles():
        readings = pipeline.process_cycle(samples)
        results.append((cycle, readings))
        if not args.quiet:
            print(f"[{cycle}]")
            for line in pipeline.display_lines(readings):
                print(f"  {line}")

    df = readings_frame(results)
    save_readings(df, args.output)
    if args.output:
        logger.info("结果已写入 %s (%d 行)", args.output, len(df))
    return 0


def run_convert(args, config: ConfigManager):
    params = config.build_path_loss_params()
    walls = args.walls if args.walls is not None else config.get_wall_count()
    frequency = args.freq if args.freq is not None else config.get_default_frequency()
    distance = rssi_to_distance(args.rssi, params, frequency_mhz=frequency, wall_count=walls)
    print(f"{distance:.3f}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="rssi-ranger", description="RSSI Ranger CLI")
    parser.add_argument("--config", default=None, help="配置文件路径，默认读取 ./config/config.yaml 或环境变量 RSSI_RANGER_CONFIG")
    parser.add_argument("--log-level", default=None, help="日志级别，覆盖配置文件中的 logging.level")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="运行 MQTT 服务端监听")
    p_run.set_defaults(func=run_mqtt)

    p_replay = sub.add_parser("replay", help="回放录制的扫描 CSV")
    p_replay.add_argument("input", help="扫描数据 CSV (cycle, emitter_id, rssi, frequency_mhz, label)")
    p_replay.add_argument("-o", "--output", default=None, help="距离结果输出 CSV")
    p_replay.add_argument("-q", "--quiet", action="store_true", help="不打印每个周期的列表")
    p_replay.set_defaults(func=run_replay)

    p_convert = sub.add_parser("convert", help="单次 RSSI -> 距离换算")
    p_convert.add_argument("rssi", type=int, help="信号强度 (dBm)")
    p_convert.add_argument("--freq", type=int, default=None, help="频率 (MHz)")
    p_convert.add_argument("--walls", type=int, default=None, help="墙体数量")
    p_convert.set_defaults(func=run_convert)

    args = parser.parse_args(argv)
    config = ConfigManager(args.config)
    setup_logging(args.log_level or config.get_log_level())

    # 无子命令/无参数时默认启动服务器
    func = getattr(args, "func", run_mqtt)
    try:
        return func(args, config)
    except RangerError as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
