""" Extraction of identity attributes from a peer certificate. The result
    is what a configured guard receives as its *certificate* argument.
"""

from cryptography import x509
from cryptography.hazmat.primitives import hashes


class CertificateError(ValueError):
    """ The certificate data could not be interpreted.
    """


def load(data):
    """ Return the list of :class:`cryptography.x509.Certificate` instances
        in *data*, which may be PEM (str or bytes, one or more certificates)
        or a single DER-encoded certificate.
    """

    if isinstance(data, str):
        data = data.encode()

    if not data:
        raise CertificateError('no certificate presented by peer')

    try:
        if data.lstrip().startswith(b'-----BEGIN'):
            certificates = x509.load_pem_x509_certificates(data)
        else:
            certificates = [x509.load_der_x509_certificate(data)]
    except ValueError as e:
        raise CertificateError(str(e)) from e

    return certificates


def parse(data):
    """ Parse the leaf certificate of *data* and return its attributes as a
        dictionary::

            {'subject': {'CN': 'sensor-17', 'O': 'Example'},
             'issuer': {'CN': 'Example CA'},
             'serial': '1f3a...',
             'not_before': datetime, 'not_after': datetime,
             'fingerprint': 'ab12...',
             'alt_names': ['sensor-17.example.org'],
             'chain': 1}

        Attribute names in subject and issuer are the RFC 4514 short names.
        Raises :class:`CertificateError` if nothing can be parsed.
    """

    certificates = load(data)
    leaf = certificates[0]

    attributes = dict()
    attributes['subject'] = _name(leaf.subject)
    attributes['issuer'] = _name(leaf.issuer)
    attributes['serial'] = '%x' % (leaf.serial_number)
    attributes['not_before'] = leaf.not_valid_before_utc
    attributes['not_after'] = leaf.not_valid_after_utc
    attributes['fingerprint'] = leaf.fingerprint(hashes.SHA256()).hex()
    attributes['alt_names'] = _alt_names(leaf)
    attributes['chain'] = len(certificates)

    return attributes


def _name(name):

    result = dict()

    for attribute in name:
        key = attribute.rfc4514_attribute_name
        value = attribute.value
        if isinstance(value, bytes):
            value = value.hex()

        # Multi-valued attributes (several OU entries, for example) become
        # a list; single ones stay scalar.

        try:
            existing = result[key]
        except KeyError:
            result[key] = value
        else:
            if isinstance(existing, list):
                existing.append(value)
            else:
                result[key] = [existing, value]

    return result


def _alt_names(certificate):

    try:
        extension = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return list()

    names = list()
    names.extend(extension.value.get_values_for_type(x509.DNSName))
    names.extend(str(address) for address in extension.value.get_values_for_type(x509.IPAddress))
    names.extend(extension.value.get_values_for_type(x509.UniformResourceIdentifier))

    return names


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
