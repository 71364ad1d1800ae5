from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

# Exact reply when no document context is available
NOT_FOUND_RESPONSE = "I couldn't find this information in your uploaded documents."

# Prefix for answers grounded in the retrieved context
GROUNDED_PREFIX = "From your documents:"

NO_CONTEXT_BLOCK = "DOCUMENT CONTEXT: None available."


# Prompt for answering strictly from the session's documents
grounded_qa_prompt = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            (
                "You are an AI assistant that answers ONLY using the information explicitly provided below.\n\n"
                "{context_block}\n\n"
                "RESPONSE RULES (STRICT):\n"
                "1. If NO document context is available:\n"
                "- You MUST reply with EXACTLY: \"{not_found}\"\n"
                "- Do NOT provide general knowledge.\n"
                "- Do NOT attempt to answer the question.\n"
                "2. If document context exists:\n"
                "- Use ONLY that context to answer.\n"
                "- Begin the response with: \"{grounded_prefix}\"\n"
                "- If something is unclear or missing in the context, say so, but do NOT invent facts.\n"
                "3. NEVER:\n"
                "- Use general/world knowledge not provided in the documents.\n"
                "- Mention web search or external information.\n"
                "All responses MUST follow these rules exactly."
            ),
        ),
        MessagesPlaceholder("chat_history"),
        ("human", "User Question: {input}"),
    ]
)


# Central dictionary to register prompts
PROMPT_REGISTRY = {
    "grounded_qa": grounded_qa_prompt,
}
