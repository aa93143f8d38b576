"""项目内使用的自定义异常定义。"""


class FiligramError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(FiligramError):
    """配置不合法时抛出。"""


class SetupError(FiligramError):
    """任务启动前的致命错误（源目录不存在、目标不可写等）。"""


class TaskError(FiligramError):
    """单个文件处理失败，不会中断整批任务。"""

    status = "error-task"


class RenderError(TaskError):
    """水印渲染阶段的失败。"""

    status = "error-render"


class DecodeFailed(RenderError):
    """图片数据无法解码。"""

    status = "error-decode"


class InvalidGeometry(RenderError):
    """图片尺寸无法缩放（宽或高为 0）。"""

    status = "error-geometry"


class EncodeFailed(RenderError):
    """结果图片编码或写入失败。"""

    status = "error-encode"


class CopyFailed(TaskError):
    """原样复制文件失败。"""

    status = "error-copy"
