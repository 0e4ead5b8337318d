from __future__ import annotations


class RangerError(Exception):
    """rssi_ranger 所有异常的基类"""


class NumericDomainError(RangerError, ValueError):
    """数值超出公式定义域（log10 非正参数、协方差为零或为负等）"""


class ConfigurationError(RangerError, ValueError):
    """配置参数非法（噪声参数非正、未知模型名称等）"""
