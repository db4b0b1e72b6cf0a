''' Wrapper module around :mod:`msgspec` providing the equivalent of
    :func:`json.loads` and :func:`json.dumps`. Both operate on bytes; there
    is no string form on the wire.
'''

import msgspec

encoder = msgspec.json.Encoder()
decoder = msgspec.json.Decoder()

dumps = encoder.encode
loads = decoder.decode

DecodeError = msgspec.DecodeError
EncodeError = msgspec.EncodeError


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
