"""Minimal demonstration of the ChatGLM chat model (needs CHATGLM_API_KEY)."""

from langchain_core.messages import HumanMessage

from glm_chat import ChatGLM

if __name__ == "__main__":
    model = ChatGLM()

    res1 = model.invoke([HumanMessage(content="Nice to meet you!")])
    print(res1)

    res2 = model.invoke([HumanMessage(content="Hello")])
    print(res2)

    for chunk in model.stream([HumanMessage(content="用一句话介绍你自己")]):
        print(chunk.content, end="", flush=True)
    print()
