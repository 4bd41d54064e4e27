# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

"""通用基础设施（错误/日志/trace 等）

约定：
- Router 不写业务逻辑：业务错误统一通过 AppError 抛出，由全局异常处理转为标准响应
- trace_id 通过 middleware 注入，并写入日志，便于线上排障
- 第三方调用失败统一转为 UpstreamError（502），不把供应商异常直接抛给前端
"""

from __future__ import annotations
