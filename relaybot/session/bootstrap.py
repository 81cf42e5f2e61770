"""
会话引导 - 进程启动时决定用哪份会话连接网关。

流程：
1. 本地会话目录已有 creds.json → 直接使用
2. 否则解码配置中的凭据字符串并写入会话目录
3. 未配置凭据（MissingCredential）→ 回退到扫码配对，配对完成后网关会通过凭据更新事件写入会话
4. 其他解码错误（格式错误、编码错误、拉取失败）→ 报告给运维并中止启动
"""

from loguru import logger

from relaybot.errors import MissingCredential
from relaybot.session.credentials import CredentialDecoder
from relaybot.session.store import SessionStore


async def bootstrap_session(store: SessionStore, decoder: CredentialDecoder, session_id: str | None) -> bool:
    """
    准备本地会话。

    参数:
        store: 会话存储
        decoder: 凭据解码器
        session_id: 配置中的凭据字符串

    返回:
        True 表示需要扫码配对（没有可用凭据），False 表示会话已就绪

    异常:
        DecodeError: 凭据格式错误或拉取失败（MissingCredential 除外）
        OSError: 写入会话失败
    """
    if store.exists():
        logger.info("Session file found locally.")
        return False

    logger.info("No local session file found, decoding the configured session id...")
    try:
        credential = await decoder.decode(session_id)
    except MissingCredential:
        logger.warning("No session id configured. A pairing QR code will be printed for authentication.")
        logger.warning("After pairing, the session is saved locally and reused on the next start.")
        return True

    store.persist(credential.payload)
    logger.info("Session downloaded successfully.")
    return False
