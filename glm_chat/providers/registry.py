"""Provider 与模型配置。

本模块将“调用方使用的模型名”与“厂商 URL 中的模型名”解耦，
便于后续在不改适配器代码的前提下切换 ChatGLM 的具体模型。"""

from dataclasses import dataclass
from typing import Dict


@dataclass
class ModelConfig:
    """单个模型的配置。"""

    logical_name: str
    provider_model: str


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]

    def invoke_url(self, model_name: str, base_url: str = "") -> str:
        model_cfg = get_model_config(model_name, self)
        return f"{(base_url or self.base_url).rstrip('/')}/{model_cfg.provider_model}/invoke"


# ChatGLM / BigModel v3 model-api 配置
CHATGLM_CONFIG = ProviderConfig(
    name="chatglm",
    base_url="https://open.bigmodel.cn/api/paas/v3/model-api",
    models={
        "chatglm_turbo": ModelConfig(
            logical_name="chatglm_turbo",
            provider_model="chatglm_turbo",
        )
    },
)


def get_model_config(name: str, provider: ProviderConfig = CHATGLM_CONFIG) -> ModelConfig:
    """根据名称获取 ModelConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in provider.models.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown model: {name!r}")
