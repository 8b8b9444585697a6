import pymqi
from pymqi import CMQC
from loguru import logger

from mqbridge.core.outcome import NoMessageAvailable, TransportError
from .interfaces import (
    ConnectionDescriptor,
    GetOptions,
    IQueueManagerClient,
    MQDelivery,
    MQTarget,
    ObjectKind,
    OpenMode,
    PutOption,
)

# Reasons that only concern the message being put, not the connection.
PERMANENT_REASONS = frozenset(
    {
        CMQC.MQRC_MSG_TOO_BIG_FOR_Q,
        CMQC.MQRC_MSG_TOO_BIG_FOR_Q_MGR,
    }
)

_PUT_OPTION_VALUES = {
    PutOption.NO_SYNCPOINT: CMQC.MQPMO_NO_SYNCPOINT,
    PutOption.NEW_MSG_ID: CMQC.MQPMO_NEW_MSG_ID,
    PutOption.NEW_CORREL_ID: CMQC.MQPMO_NEW_CORREL_ID,
    PutOption.WARN_IF_NO_SUBS_MATCHED: CMQC.MQPMO_WARN_IF_NO_SUBS_MATCHED,
}

_OPEN_OPTIONS = {
    OpenMode.OUTPUT: CMQC.MQOO_OUTPUT | CMQC.MQOO_FAIL_IF_QUIESCING,
    OpenMode.INPUT: CMQC.MQOO_INPUT_AS_Q_DEF | CMQC.MQOO_FAIL_IF_QUIESCING,
}


def put_options_value(options: PutOption) -> int:
    value = 0
    for flag, mqpmo in _PUT_OPTION_VALUES.items():
        if flag in options:
            value |= mqpmo
    return value


def translate_error(call: str, error: pymqi.MQMIError) -> TransportError:
    return TransportError(
        call,
        reason=error.reason,
        comp=error.comp,
        detail=str(error),
        permanent=error.reason in PERMANENT_REASONS,
    )


class _Handle:
    def __init__(self, obj, subscription: bool = False):
        self.obj = obj
        self.subscription = subscription


class PymqiClient(IQueueManagerClient):
    """Queue manager client backed by pymqi (IBM MQ C client)."""

    def __init__(self):
        self._qmgr: pymqi.QueueManager | None = None

    def connect(self, descriptor: ConnectionDescriptor) -> None:
        qmgr = pymqi.QueueManager(None)
        options = CMQC.MQCNO_HANDLE_SHARE_BLOCK
        kwargs = {"user": descriptor.user, "password": descriptor.password}

        if descriptor.client_mode:
            options |= CMQC.MQCNO_CLIENT_BINDING
            cd = pymqi.CD()
            cd.ChannelName = descriptor.channel.encode()
            cd.ConnectionName = descriptor.connection_name.encode()
            cd.ChannelType = CMQC.MQCHT_CLNTCONN
            cd.TransportType = CMQC.MQXPT_TCP
            kwargs["cd"] = cd

            if descriptor.cipher_spec:
                cd.SSLCipherSpec = descriptor.cipher_spec.encode()
                sco = pymqi.SCO()
                if descriptor.key_repository:
                    sco.KeyRepository = descriptor.key_repository.encode()
                kwargs["sco"] = sco

        try:
            qmgr.connect_with_options(descriptor.queue_manager, opts=options, **kwargs)
        except pymqi.MQMIError as e:
            raise translate_error("MQCONN", e) from e
        self._qmgr = qmgr

    def open(self, target: MQTarget, mode: OpenMode) -> _Handle:
        if mode is OpenMode.SUBSCRIBE:
            return self._subscribe(target)

        od = pymqi.OD()
        if target.kind is ObjectKind.TOPIC:
            od.ObjectType = CMQC.MQOT_TOPIC
            od.Version = CMQC.MQOD_VERSION_4
            od.set_vs("ObjectString", target.name.encode())
        else:
            od.ObjectType = CMQC.MQOT_Q
            od.ObjectName = target.name.encode()

        queue = pymqi.Queue(self._qmgr)
        try:
            queue.open(od, _OPEN_OPTIONS[mode])
        except pymqi.MQMIError as e:
            raise translate_error("MQOPEN", e) from e
        return _Handle(queue)

    def _subscribe(self, target: MQTarget) -> _Handle:
        sd = pymqi.SD()
        sd.Options = (
            CMQC.MQSO_CREATE
            | CMQC.MQSO_NON_DURABLE
            | CMQC.MQSO_FAIL_IF_QUIESCING
            | CMQC.MQSO_MANAGED
        )
        sd.set_vs("ObjectString", target.name.encode())

        subscription = pymqi.Subscription(self._qmgr)
        try:
            subscription.sub(sub_desc=sd)
        except pymqi.MQMIError as e:
            raise translate_error("MQSUB", e) from e
        return _Handle(subscription, subscription=True)

    def put(self, handle: _Handle, payload: bytes, options: PutOption, fmt: str | None = None) -> bytes:
        md = pymqi.MD()
        if fmt:
            md.Format = fmt.ljust(8).encode()
        pmo = pymqi.PMO()
        pmo.Options = put_options_value(options)

        try:
            handle.obj.put(payload, md, pmo)
        except pymqi.MQMIError as e:
            if e.comp == CMQC.MQCC_WARNING:
                logger.warning(f"MQ call returned warning in MQPUT: {e}")
                return b""
            raise translate_error("MQPUT", e) from e
        return bytes(md.MsgId)

    def get(self, handle: _Handle, options: GetOptions) -> MQDelivery:
        md = pymqi.MD()
        gmo = pymqi.GMO()
        gmo.Version = CMQC.MQGMO_VERSION_2
        gmo.Options = (
            (CMQC.MQGMO_SYNCPOINT if options.syncpoint else CMQC.MQGMO_NO_SYNCPOINT)
            | CMQC.MQGMO_WAIT
            | CMQC.MQGMO_CONVERT
            | CMQC.MQGMO_FAIL_IF_QUIESCING
        )
        gmo.WaitInterval = options.wait_interval_ms
        gmo.MatchOptions = CMQC.MQMO_NONE
        if options.match_msg_id is not None:
            gmo.MatchOptions = CMQC.MQMO_MATCH_MSG_ID
            md.MsgId = options.match_msg_id

        try:
            payload = handle.obj.get(None, md, gmo)
        except pymqi.MQMIError as e:
            if e.reason == CMQC.MQRC_NO_MSG_AVAILABLE:
                raise NoMessageAvailable() from e
            raise translate_error("MQGET", e) from e

        return MQDelivery(
            payload=bytes(payload),
            msg_id=bytes(md.MsgId),
            format=md.Format.decode("ascii", errors="replace").strip(),
        )

    def commit(self) -> None:
        try:
            self._qmgr.commit()
        except pymqi.MQMIError as e:
            raise translate_error("MQCMIT", e) from e

    def backout(self) -> None:
        try:
            self._qmgr.backout()
        except pymqi.MQMIError as e:
            raise translate_error("MQBACK", e) from e

    def close(self, handle: _Handle) -> None:
        try:
            if handle.subscription:
                handle.obj.close(sub_close_options=CMQC.MQCO_NONE, close_sub_queue=True)
            else:
                handle.obj.close()
        except pymqi.MQMIError as e:
            raise translate_error("MQCLOSE", e) from e

    def disconnect(self) -> None:
        if self._qmgr is None:
            return
        qmgr, self._qmgr = self._qmgr, None
        try:
            qmgr.disconnect()
        except pymqi.MQMIError as e:
            raise translate_error("MQDISC", e) from e
