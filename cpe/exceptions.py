# cpe/exceptions.py

# Códigos de erro do domínio
ERR_INVALID_INPUT = "CPE_1001"
ERR_BUILD_STRUCTURE = "CPE_2001"
ERR_ALLOCATION = "CPE_3001"
ERR_DOCUMENT_NOT_FOUND = "CPE_4004"
ERR_INVALID_TRANSITION = "CPE_5001"


class CpeError(Exception):
    """
    Erro genérico da emissão de CPE.
    Base para erros específicos.
    """

    code = "CPE_0000"

    def __init__(self, mensagem: str):
        self.mensagem = mensagem
        super().__init__(mensagem)


class InvalidEmissionInput(CpeError, ValueError):
    """
    Dados de entrada malformados (linhas, cliente, série...).
    Levantado antes de alocar número, então nenhum correlativo é consumido.
    """

    code = ERR_INVALID_INPUT

    def __init__(self, result):
        self.result = result
        self.field = result.field
        super().__init__(f"{result.field}: {result.reason}")


class AllocationError(CpeError):
    """
    Falha na transação de alocação do correlativo.
    Nenhum número foi consumido; o chamador pode repetir a operação inteira.
    """

    code = ERR_ALLOCATION


class DocumentBuildError(CpeError):
    """
    Campo estruturalmente obrigatório ausente no XML UBL.

    O número já alocado fica "queimado": nunca é reutilizado.
    """

    code = ERR_BUILD_STRUCTURE

    def __init__(self, mensagem: str, *, field: str):
        self.field = field
        super().__init__(mensagem)


class InvalidStatusTransition(CpeError):
    """
    Tentativa de transição de status não permitida (ex: sair de ACCEPTED).
    Indica erro de programação, nunca decisão da SUNAT.
    """

    code = ERR_INVALID_TRANSITION
