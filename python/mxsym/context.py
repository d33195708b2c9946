import ctypes


class Context(ctypes.Structure):
    """ Device placement descriptor passed to the engine.

        ``device_type`` follows the engine's mask: 1 for cpu,
        2 for gpu and 3 for pinned cpu memory.
    """
    _fields_ = [("device_type", ctypes.c_int),
                ("device_id", ctypes.c_int)]
    MASK2STR = {
        1 : 'cpu',
        2 : 'gpu',
        3 : 'cpu_pinned',
    }
    STR2MASK = {
        'cpu' : 1,
        'gpu' : 2,
        'cpu_pinned' : 3,
    }
    def __init__(self, device_type, device_id=0):
        super(Context, self).__init__()
        if isinstance(device_type, Context):
            device_type, device_id = \
                device_type.device_type, device_type.device_id
        self.device_type = device_type
        self.device_id = device_id

    @property
    def device_name(self):
        return Context.MASK2STR[self.device_type]

    def __eq__(self, other):
        return isinstance(other, Context) and \
            self.device_type == other.device_type and \
            self.device_id == other.device_id

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash((self.device_type, self.device_id))

    def __repr__(self):
        return "%s(%d)" % (self.device_name, self.device_id)

def context(dev_type, dev_id=0):
    """ Context creator.

        Accepts either the device name or its integer mask.
    """
    if isinstance(dev_type, str):
        dev_type = dev_type.split()[0]
        if dev_type not in Context.STR2MASK:
            raise ValueError("Unknown device type %s" % dev_type)
        dev_type = Context.STR2MASK[dev_type]
    if dev_type not in Context.MASK2STR:
        raise ValueError("Unknown device type %s" % dev_type)
    return Context(dev_type, dev_id)

def cpu(dev_id=0):
    return Context(1, dev_id)

def gpu(dev_id=0):
    return Context(2, dev_id)

def cpu_pinned(dev_id=0):
    return Context(3, dev_id)
