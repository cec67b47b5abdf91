"""
Handler used when the application does not supply one.
"""


class DefaultHandler:
    """
    Exposes no commands.

    A server built around it accepts connections and answers every request
    with "-ERR unknown command '<name>'", which is handy for checking that
    the transport works before any command exists.
    """

    def __repr__(self) -> str:
        return "DefaultHandler()"
